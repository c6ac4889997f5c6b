import numpy as np
from abc import ABC, abstractmethod
from dataclasses import dataclass

from helper_functions import dist

# Identifier carried by an observation that has not been matched to a landmark
NO_ASSOCIATION = -1


@dataclass(frozen=True)
class Landmark:
    """
    A fixed, uniquely identified point of the map (map frame).
    """
    id: int
    x: float
    y: float


@dataclass(frozen=True)
class PoseStd:
    """
    Standard deviations of a pose (x, y, theta).
    """
    std_x: float
    std_y: float
    std_theta: float

    @classmethod
    def from_array(cls, std):
        """Build from a 3-element [std_x, std_y, std_theta] sequence."""
        if isinstance(std, cls):
            return std
        std_x, std_y, std_theta = std
        return cls(float(std_x), float(std_y), float(std_theta))


@dataclass(frozen=True)
class LandmarkStd:
    """
    Standard deviations of a landmark observation along map x and y.
    """
    std_x: float
    std_y: float

    @classmethod
    def from_array(cls, std):
        """Build from a 2-element [std_x, std_y] sequence."""
        if isinstance(std, cls):
            return std
        std_x, std_y = std
        return cls(float(std_x), float(std_y))


class LandmarkObs:
    """
    A single landmark observation.

    The same type is used for vehicle-frame measurements, map-frame
    transformed measurements and candidate landmark positions; the caller
    keeps track of which frame a given list is in.
    """

    def __init__(self, id=NO_ASSOCIATION, x=0.0, y=0.0):
        """
        Initialize the observation.

        Args:
            id: Landmark identifier, NO_ASSOCIATION until associated
            x: X coordinate
            y: Y coordinate
        """
        self.id = id
        self.x = x
        self.y = y

    def to_map_frame(self, x, y, theta):
        """
        Transform a vehicle-frame observation into the map frame of a pose.

        Rotates by theta and then translates by (x, y). The observation
        itself is left untouched.

        Args:
            x: Pose x position in the map frame
            y: Pose y position in the map frame
            theta: Pose heading (radians)

        Returns:
            new LandmarkObs in map coordinates with the same id
        """
        cos_theta = np.cos(theta)
        sin_theta = np.sin(theta)
        map_x = x + cos_theta * self.x - sin_theta * self.y
        map_y = y + sin_theta * self.x + cos_theta * self.y
        return LandmarkObs(self.id, map_x, map_y)

    def __eq__(self, other):
        if not isinstance(other, LandmarkObs):
            return NotImplemented
        return (self.id, self.x, self.y) == (other.id, other.x, other.y)

    def __repr__(self):
        return f"LandmarkObs(id={self.id}, x={self.x}, y={self.y})"


class Map:
    """
    A read-only 2D map of landmarks used for robot localization.
    """

    def __init__(self, landmarks=()):
        """
        Initialize the map.

        Args:
            landmarks: Sequence of Landmark objects, kept in the given order
        """
        self.landmark_list = tuple(landmarks)

    @classmethod
    def from_array(cls, xy, ids=None):
        """
        Build a map from landmark coordinates.

        Args:
            xy: Array-like of shape (M, 2) with landmark (x, y) positions
            ids: Landmark identifiers (defaults to 1..M)

        Returns:
            Map
        """
        xy = np.asarray(xy, dtype=float).reshape(-1, 2)
        if ids is None:
            ids = range(1, len(xy) + 1)
        return cls(Landmark(int(i), float(x), float(y)) for i, (x, y) in zip(ids, xy))

    @classmethod
    def random(cls, width=10.0, height=10.0, num_landmarks=5, seed=None):
        """
        Generate a map with uniformly placed landmarks.

        Args:
            width: Width of the environment
            height: Height of the environment
            num_landmarks: Number of landmarks to generate
            seed: Random seed for reproducibility

        Returns:
            Map
        """
        rng = np.random.default_rng(seed)
        xy = rng.uniform(
            low=[0, 0],
            high=[width, height],
            size=(num_landmarks, 2)
        )
        return cls.from_array(xy)

    def __len__(self):
        return len(self.landmark_list)

    def __iter__(self):
        return iter(self.landmark_list)

    def get_landmarks(self):
        """
        Get the landmarks in the map.

        Returns:
            numpy array of landmark coordinates (x, y)
        """
        return np.array([[lm.x, lm.y] for lm in self.landmark_list], dtype=float).reshape(-1, 2)

    def within_range(self, x, y, sensor_range):
        """
        Landmarks strictly closer than sensor_range to a position.

        Args:
            x: X position in the map frame
            y: Y position in the map frame
            sensor_range: Maximum observable distance

        Returns:
            list of LandmarkObs candidates, in map order
        """
        return [
            LandmarkObs(lm.id, lm.x, lm.y)
            for lm in self.landmark_list
            if dist(lm.x, lm.y, x, y) < sensor_range
        ]


class Localization(ABC):
    """
    Abstract base class for localization algorithms.
    """

    @abstractmethod
    def initialize(self, x, y, theta, std):
        """
        Initialize the belief state around a pose estimate.

        Args:
            x: Initial x estimate
            y: Initial y estimate
            theta: Initial heading estimate (radians)
            std: PoseStd of the estimate
        """
        pass

    @abstractmethod
    def update_motion(self, delta_t, std_pos, velocity, yaw_rate):
        """
        Update belief based on commanded motion.

        Args:
            delta_t: Time step
            std_pos: PoseStd of the process noise
            velocity: Commanded linear velocity
            yaw_rate: Commanded yaw rate
        """
        pass

    @abstractmethod
    def update_measurement(self, sensor_range, std_landmark, observations, map_landmarks):
        """
        Update belief based on landmark observations.

        Args:
            sensor_range: Maximum observable distance
            std_landmark: LandmarkStd of the observations
            observations: Vehicle-frame LandmarkObs list
            map_landmarks: Map of known landmarks
        """
        pass

    @abstractmethod
    def get_belief(self):
        """
        Get the current belief state.

        Returns:
            representation of the belief state (depends on implementation)
        """
        pass

    @abstractmethod
    def get_estimate(self):
        """
        Get the best estimate of the robot's pose.

        Returns:
            tuple of (x, y, theta) representing the estimated pose
        """
        pass

    @abstractmethod
    def visualize_belief(self, ax=None, map_landmarks=None):
        """
        Visualize the belief state.

        Args:
            ax: Matplotlib axis to draw on (creates a new one if None)
            map_landmarks: Map to draw alongside the belief (optional)
        """
        pass
