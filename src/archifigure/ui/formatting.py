"""Display formatting helpers."""

import math


def _clamp(value: float) -> float:
    return min(255.0, max(0.0, value))


def _log(value: float) -> float:
    # Non-positive inputs yield -inf, which the channel clamp turns into 0.
    return math.log(value) if value > 0 else float("-inf")


def temp_to_color(kelvin: float) -> str:
    """Convert a colour temperature in Kelvin to a CSS ``rgb()`` string.

    Uses Tanner Helland's curve fit of the black-body spectrum.  Channel
    values are clamped to ``[0, 255]`` but not rounded, so the string may
    contain fractional components.  Temperatures at or below zero clamp to
    ``"rgb(255, 0, 0)"``.

    Args:
        kelvin: Colour temperature, e.g. ``6500`` for daylight.

    Returns:
        A string such as ``"rgb(255, 249.1, 250.3)"``.
    """
    temp = kelvin / 100

    if temp <= 66:
        red = 255.0
        green = _clamp(99.4708025861 * _log(temp) - 161.1195681661)
        if temp <= 19:
            blue = 0.0
        else:
            blue = _clamp(138.5177312231 * _log(temp - 10) - 305.0447927307)
    else:
        red = _clamp(329.698727446 * math.pow(temp - 60, -0.1332047592))
        green = _clamp(288.1221695283 * math.pow(temp - 60, -0.0755148492))
        blue = 255.0

    return f"rgb({_format_channel(red)}, {_format_channel(green)}, {_format_channel(blue)})"


def _format_channel(value: float) -> str:
    # Whole numbers print without a trailing ".0", matching CSS output.
    return str(int(value)) if value.is_integer() else repr(value)
