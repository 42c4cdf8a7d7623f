"""
Screen projection helpers.

Linear azimuth/pitch to pixel mapping with the horizon at the vertical
centre. Not a pinhole model: equal angles map to equal pixel distances
across the whole field of view.
"""


def azimuth_to_screen_x(delta_az_deg: float, hfov_deg: float, width: float) -> float:
    """Map [-hfov/2, hfov/2] onto [0, width], clamping outside the FOV."""
    half_width = width / 2
    x = (delta_az_deg / hfov_deg) * width + half_width
    return max(0.0, min(float(width), x))


def pitch_to_screen_y(pitch_deg: float, vfov_deg: float, height: float) -> float:
    """Map [-vfov/2, vfov/2] onto [0, height].

    Positive pitch (camera tilted up) moves the horizon down the screen.
    """
    half_height = height / 2
    y = (pitch_deg / vfov_deg) * height + half_height
    return max(0.0, min(float(height), y))


def estimate_vfov_deg(hfov_deg: float, width: float, height: float) -> float:
    """Vertical FOV by proportional scaling of the horizontal FOV."""
    return hfov_deg * (height / max(1.0, width))


def is_within_fov(delta_az_deg: float, hfov_deg: float) -> bool:
    half = hfov_deg / 2
    return -half <= delta_az_deg <= half


def edge_side(delta_az_deg: float) -> str:
    """Which screen edge an off-screen azimuth points to."""
    return "left" if delta_az_deg < 0 else "right"
