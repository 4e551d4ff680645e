import numpy as np

UP = np.array([0.0, -1.0])


def _xy(point):
    """Return the 2D (x, y) projection of a landmark or coordinate tuple."""
    if hasattr(point, "x"):
        return np.array([point.x, point.y], dtype=float)
    return np.array(point[:2], dtype=float)


# Function to calculate the angle between three points
def calculate_angle(a, b, c):
    """Angle at vertex b between rays b->a and b->c, in degrees within [0, 180]."""
    a, b, c = _xy(a), _xy(b), _xy(c)
    ba = a - b
    bc = c - b
    magnitude = np.linalg.norm(ba) * np.linalg.norm(bc)
    if magnitude == 0:
        return 0.0
    cosine = np.clip(np.dot(ba, bc) / magnitude, -1.0, 1.0)
    return float(np.clip(np.degrees(np.arccos(cosine)), 0.0, 180.0))


# Function to calculate the straight-line distance between two points
def normalized_distance(a, b):
    """Euclidean distance in normalized image units."""
    return float(np.linalg.norm(_xy(a) - _xy(b)))


# Function to calculate the horizontal distance between two points
def calculate_horizontal_distance(a, b):
    """Calculate horizontal distance between two points."""
    return abs(float(_xy(a)[0] - _xy(b)[0]))


def vertical_cosine(a, b):
    """Cosine between the vector b->a and the image "up" direction (0, -1).

    1.0 means a sits straight above b, 0.0 means the segment is horizontal.
    A zero-length vector gives 0.0.
    """
    v = _xy(a) - _xy(b)
    norm = np.linalg.norm(v)
    if norm == 0:
        return 0.0
    return float(np.clip(np.dot(v, UP) / norm, -1.0, 1.0))


def torso_tilt(top, bottom):
    """Deviation in degrees of the bottom->top segment from vertical (0 = upright)."""
    return float(np.degrees(np.arccos(vertical_cosine(top, bottom))))


def horizontal_deviation(a, b):
    """Angle in degrees between segment a-b and the horizontal axis, within [0, 90]."""
    v = _xy(a) - _xy(b)
    if not v.any():
        return 0.0
    return float(np.degrees(np.arctan2(abs(v[1]), abs(v[0]))))


def midpoint(a, b):
    a, b = _xy(a), _xy(b)
    return tuple(((a + b) / 2).tolist())
