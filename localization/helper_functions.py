import numpy as np


def dist(x1, y1, x2, y2):
    """
    Euclidean distance between two points.

    Args:
        x1: X coordinate of the first point
        y1: Y coordinate of the first point
        x2: X coordinate of the second point
        y2: Y coordinate of the second point

    Returns:
        distance between the points (array if any argument is an array)
    """
    return np.sqrt((x2 - x1)**2 + (y2 - y1)**2)


def multiv_prob(sig_x, sig_y, x_obs, y_obs, mu_x, mu_y):
    """
    Bivariate Gaussian density with independent x and y components.

    Args:
        sig_x: Standard deviation along x
        sig_y: Standard deviation along y
        x_obs: Observed x position
        y_obs: Observed y position
        mu_x: Mean x position
        mu_y: Mean y position

    Returns:
        probability density at (x_obs, y_obs)
    """
    gauss_norm = 1.0 / (2 * np.pi * sig_x * sig_y)
    exponent = ((x_obs - mu_x)**2 / (2 * sig_x**2)
                + (y_obs - mu_y)**2 / (2 * sig_y**2))
    return gauss_norm * np.exp(-exponent)
