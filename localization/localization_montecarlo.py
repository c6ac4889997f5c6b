import sys

import numpy as np
import matplotlib.pyplot as plt
from scipy.stats import gaussian_kde

from helper_functions import dist, multiv_prob
from localization_base import Localization, LandmarkStd, PoseStd, NO_ASSOCIATION


class Particle:
    """
    One weighted pose hypothesis of the filter.
    """

    def __init__(self, id, x, y, theta, weight=1.0):
        self.id = id
        self.x = x
        self.y = y
        self.theta = theta
        self.weight = weight

        # Per-observation diagnostics, index aligned
        self.associations = []
        self.sense_x = []
        self.sense_y = []

    def copy(self):
        """Return an independent copy of the particle."""
        particle = Particle(self.id, self.x, self.y, self.theta, self.weight)
        particle.associations = list(self.associations)
        particle.sense_x = list(self.sense_x)
        particle.sense_y = list(self.sense_y)
        return particle

    def __repr__(self):
        return (f"Particle(id={self.id}, x={self.x}, y={self.y}, "
                f"theta={self.theta}, weight={self.weight})")


class MonteCarloLocalization(Localization):
    """
    Monte Carlo Localization (Particle Filter) against a known landmark map.

    The belief is a set of weighted particles which is moved with a CTRV
    motion model, weighted by the likelihood of the landmark observations and
    resampled with replacement in proportion to the weights.

    The filter owns a single random generator that is advanced by init(),
    prediction() and resample(). Particle ids are copied along with the rest
    of a particle on resampling and do not track lineage.
    """

    def __init__(self, num_particles=100, seed=None, rng=None,
                 yaw_rate_threshold=1e-4, weight_sum_threshold=1e-5, verbose=False):
        """
        Initialize Monte Carlo Localization.

        Args:
            num_particles: Number of particles to use, fixed for the filter's lifetime
            seed: Seed for the filter's random generator
            rng: numpy Generator to use instead of seeding a new one
            yaw_rate_threshold: Yaw rates at or below this magnitude use straight-line motion
            weight_sum_threshold: Weights are only normalized when their sum exceeds this
            verbose: Print a notice on degenerate weight cycles
        """
        if num_particles < 1:
            raise ValueError(f"num_particles must be at least 1, got {num_particles}")

        self.num_particles = int(num_particles)
        self.rng = rng if rng is not None else np.random.default_rng(seed)

        self.yaw_rate_threshold = yaw_rate_threshold
        self.weight_sum_threshold = weight_sum_threshold
        self.verbose = verbose

        self.particles = []
        self.is_initialized = False

    def _check_initialized(self):
        if not self.is_initialized:
            raise ValueError("Particles not initialized. Call init() first.")

    def init(self, x, y, theta, std):
        """
        Create the particle set around an initial pose estimate.

        Every pose dimension is drawn independently from a Gaussian centered
        on the estimate. All weights start at 1.0 and ids run 0..N-1.

        Args:
            x: Initial x estimate
            y: Initial y estimate
            theta: Initial heading estimate (radians)
            std: PoseStd (or [std_x, std_y, std_theta]); must be non-negative
        """
        std = PoseStd.from_array(std)

        poses = self.rng.normal(
            loc=[x, y, theta],
            scale=[std.std_x, std.std_y, std.std_theta],
            size=(self.num_particles, 3)
        )

        self.particles = [
            Particle(n, float(px), float(py), float(ptheta), 1.0)
            for n, (px, py, ptheta) in enumerate(poses)
        ]
        self.is_initialized = True

    def initialize(self, x, y, theta, std):
        self.init(x, y, theta, std)

    def prediction(self, delta_t, std_pos, velocity, yaw_rate):
        """
        Move every particle with the commanded velocity and yaw rate.

        Uses the constant turn rate and velocity model, switching to a
        straight-line update when the yaw rate is too small to divide by.
        Zero-mean Gaussian noise is added to each dimension afterwards.

        Args:
            delta_t: Time step
            std_pos: PoseStd of the process noise
            velocity: Commanded linear velocity
            yaw_rate: Commanded yaw rate
        """
        self._check_initialized()
        std_pos = PoseStd.from_array(std_pos)

        noise = self.rng.normal(
            loc=0.0,
            scale=[std_pos.std_x, std_pos.std_y, std_pos.std_theta],
            size=(self.num_particles, 3)
        )

        for particle, (noise_x, noise_y, noise_theta) in zip(self.particles, noise):
            theta = particle.theta
            if abs(yaw_rate) > self.yaw_rate_threshold:
                theta_new = theta + yaw_rate * delta_t
                particle.x += velocity / yaw_rate * (np.sin(theta_new) - np.sin(theta))
                particle.y += velocity / yaw_rate * (np.cos(theta) - np.cos(theta_new))
            else:
                particle.x += velocity * np.cos(theta) * delta_t
                particle.y += velocity * np.sin(theta) * delta_t
            particle.theta = theta + yaw_rate * delta_t

            particle.x = float(particle.x + noise_x)
            particle.y = float(particle.y + noise_y)
            particle.theta = float(particle.theta + noise_theta)

    def update_motion(self, delta_t, std_pos, velocity, yaw_rate):
        self.prediction(delta_t, std_pos, velocity, yaw_rate)

    def data_association(self, predicted, observations):
        """
        Assign each observation the id of its nearest predicted landmark.

        Ties keep the first candidate found. With no candidates the id is set
        to NO_ASSOCIATION. Both lists must be in the map frame.

        Args:
            predicted: Candidate LandmarkObs list
            observations: LandmarkObs list, updated in place
        """
        for obs in observations:
            min_dist = np.inf
            best_id = NO_ASSOCIATION
            for pred in predicted:
                d = dist(pred.x, pred.y, obs.x, obs.y)
                if d < min_dist:
                    min_dist = d
                    best_id = pred.id
            obs.id = best_id

    def _particle_weight(self, particle, std_landmark, predicted):
        """
        Likelihood of a particle's associated observations.

        Product of bivariate Gaussian densities, each centered on the
        observation's matched landmark. A particle whose observations could
        not be matched to any landmark in range gets weight 0.
        """
        matches = {pred.id: pred for pred in predicted}

        weight = 1.0
        for lm_id, sense_x, sense_y in zip(particle.associations, particle.sense_x, particle.sense_y):
            match = matches.get(lm_id)
            if match is None:
                return 0.0
            weight *= multiv_prob(std_landmark.std_x, std_landmark.std_y,
                                  sense_x, sense_y, match.x, match.y)
        return float(weight)

    def update_weights(self, sensor_range, std_landmark, observations, map_landmarks):
        """
        Weight every particle by the likelihood of the observations.

        For each particle the vehicle-frame observations are moved into the
        map frame using the particle's pose, matched against the landmarks in
        sensor range and scored. Weights are then normalized across the set
        unless their sum is too small to divide by.

        Args:
            sensor_range: Maximum observable distance
            std_landmark: LandmarkStd (or [std_x, std_y]) of the observations
            observations: Vehicle-frame LandmarkObs list
            map_landmarks: Map of known landmarks
        """
        self._check_initialized()
        std_landmark = LandmarkStd.from_array(std_landmark)

        for particle in self.particles:
            # Observations in map coordinates
            observations_map = [
                obs.to_map_frame(particle.x, particle.y, particle.theta)
                for obs in observations
            ]

            # Landmarks within sensor range of the particle
            predicted = map_landmarks.within_range(particle.x, particle.y, sensor_range)

            self.data_association(predicted, observations_map)

            self.set_associations(
                particle,
                [obs.id for obs in observations_map],
                [obs.x for obs in observations_map],
                [obs.y for obs in observations_map]
            )

            particle.weight = self._particle_weight(particle, std_landmark, predicted)

        self._normalize_weights()

    def update_measurement(self, sensor_range, std_landmark, observations, map_landmarks):
        self.update_weights(sensor_range, std_landmark, observations, map_landmarks)

    def _normalize_weights(self):
        """
        Normalize weights to sum to 1, leaving them alone when the sum is degenerate.
        """
        total = sum(particle.weight for particle in self.particles)
        if total > self.weight_sum_threshold:
            for particle in self.particles:
                particle.weight = particle.weight / total
        elif self.verbose:
            print(f"Weight sum {total:.3e} not above {self.weight_sum_threshold}, "
                  f"weights left unnormalized")

    def resample(self):
        """
        Draw a new particle set with replacement, proportionally to the weights.

        The drawn particles are copied by value; weights are kept as they
        were. If every weight is zero the draw is uniform.
        """
        self._check_initialized()

        weights = np.array([particle.weight for particle in self.particles], dtype=float)
        total = np.sum(weights)
        if total > 0:
            probabilities = weights / total
        else:
            if self.verbose:
                print("All particle weights are zero, resampling uniformly")
            probabilities = np.full(self.num_particles, 1.0 / self.num_particles)

        indices = self.rng.choice(self.num_particles, size=self.num_particles,
                                  replace=True, p=probabilities)

        self.particles = [self.particles[i].copy() for i in indices]

    def set_associations(self, particle, associations, sense_x, sense_y):
        """
        Attach per-observation association data to a particle.

        Replaces whatever the particle held before.

        Args:
            particle: Particle to update
            associations: Landmark id of each observation
            sense_x: Map-frame x of each observation
            sense_y: Map-frame y of each observation
        """
        particle.associations = list(associations)
        particle.sense_x = list(sense_x)
        particle.sense_y = list(sense_y)

    def get_associations(self, particle):
        """
        Landmark ids associated with a particle's observations.

        Args:
            particle: Particle to read

        Returns:
            list of landmark ids, one per observation
        """
        return list(particle.associations)

    def get_sense_coord(self, particle, coord):
        """
        Map-frame observation coordinates of a particle.

        Args:
            particle: Particle to read
            coord: "X" or "Y"

        Returns:
            list of coordinates along the requested axis
        """
        if coord == "X":
            return list(particle.sense_x)
        if coord == "Y":
            return list(particle.sense_y)
        raise ValueError(f"coord must be 'X' or 'Y', got {coord!r}")

    def format_associations(self, particle):
        """
        Render a particle's associations for reporting.

        Args:
            particle: Particle to read

        Returns:
            space-separated landmark ids (empty string if none)
        """
        return " ".join(str(lm_id) for lm_id in particle.associations)

    def format_sense_coord(self, particle, coord):
        """
        Render a particle's map-frame observation coordinates for reporting.

        Args:
            particle: Particle to read
            coord: "X" or "Y"

        Returns:
            space-separated coordinates (empty string if none)
        """
        return " ".join(f"{value:g}" for value in self.get_sense_coord(particle, coord))

    def print_particle_data(self, particle, sink=None):
        """
        Write one particle's state to a text sink.

        Args:
            particle: Particle to report
            sink: File-like object (defaults to stdout)
        """
        sink = sink if sink is not None else sys.stdout
        print(f"\nParticle {particle.id}"
              f"\nXpos: {particle.x:g}"
              f"\nYpos: {particle.y:g}"
              f"\nTheta: {particle.theta:g}"
              f"\nWeight: {particle.weight:g}"
              f"\nAssociations: {self.format_associations(particle)}", file=sink)

    def print_all_particles_data(self, sink=None):
        """
        Write every particle's state followed by a separator line.

        Args:
            sink: File-like object (defaults to stdout)
        """
        sink = sink if sink is not None else sys.stdout
        for particle in self.particles:
            self.print_particle_data(particle, sink)
        print("=" * 55, file=sink)
        if hasattr(sink, "flush"):
            sink.flush()

    def _weights(self):
        """Weights normalized to sum to 1, uniform if they are all zero."""
        weights = np.array([particle.weight for particle in self.particles], dtype=float)
        total = np.sum(weights)
        if total > 0:
            return weights / total
        return np.full(len(weights), 1.0 / len(weights))

    def best_particle(self):
        """
        Get the particle with the highest weight.

        Returns:
            Particle (the first one on ties)
        """
        self._check_initialized()
        return max(self.particles, key=lambda particle: particle.weight)

    def effective_sample_size(self):
        """
        Effective number of particles carrying the weight.

        Returns:
            1 / sum of squared normalized weights, between 1 and num_particles
        """
        self._check_initialized()
        return float(1.0 / np.sum(self._weights()**2))

    def get_belief(self):
        """
        Get the current belief state.

        Returns:
            tuple of (poses (N, 3) array of x, y, theta; weights (N,) array)
        """
        self._check_initialized()
        poses = np.array([[p.x, p.y, p.theta] for p in self.particles], dtype=float)
        weights = np.array([p.weight for p in self.particles], dtype=float)
        return poses, weights

    def get_estimate(self):
        """
        Get the best estimate of the robot's pose as the weighted average of particles.

        Returns:
            tuple of (x, y, theta) representing the estimated pose
        """
        self._check_initialized()
        poses, _ = self.get_belief()
        weights = self._weights()

        # Weighted average of positions
        x = np.sum(weights * poses[:, 0])
        y = np.sum(weights * poses[:, 1])

        # For theta, we need to handle the circular nature
        cos_theta = np.sum(weights * np.cos(poses[:, 2]))
        sin_theta = np.sum(weights * np.sin(poses[:, 2]))
        theta = np.arctan2(sin_theta, cos_theta)

        return float(x), float(y), float(theta)

    def visualize_belief(self, ax=None, map_landmarks=None):
        """
        Visualize the belief state by plotting particles.

        Args:
            ax: Matplotlib axis to draw on (creates a new one if None)
            map_landmarks: Map to draw alongside the particles (optional)

        Returns:
            the matplotlib axis
        """
        self._check_initialized()

        # Create figure if not provided
        if ax is None:
            fig, ax = plt.subplots(figsize=(10, 10))

        poses, _ = self.get_belief()
        weights = self._weights()

        # Scale point sizes by weights
        sizes = 50 * weights * self.num_particles
        colors = weights / np.max(weights)
        sc = ax.scatter(
            poses[:, 0],
            poses[:, 1],
            c=colors,
            s=sizes,
            alpha=0.5,
            cmap='viridis',
            label='Particles'
        )
        plt.colorbar(sc, ax=ax, label='Normalized Weight')

        # Draw particle orientations (for the heaviest particles only)
        if self.num_particles > 100:
            indices = np.argsort(weights)[-50:]
        else:
            indices = range(self.num_particles)

        for i in indices:
            x, y, theta = poses[i]
            dx = 0.2 * np.cos(theta)
            dy = 0.2 * np.sin(theta)
            ax.arrow(x, y, dx, dy, head_width=0.05, head_length=0.1, fc='b', ec='b', alpha=0.5)

        # Plot landmarks
        if map_landmarks is not None and len(map_landmarks) > 0:
            landmarks = map_landmarks.get_landmarks()
            ax.scatter(
                landmarks[:, 0],
                landmarks[:, 1],
                c='g',
                marker='^',
                s=100,
                label='Landmarks'
            )

        # Draw the estimated pose
        x, y, theta = self.get_estimate()
        ax.plot(x, y, 'ro', markersize=10, label='Estimated Pose')
        dx = 0.3 * np.cos(theta)
        dy = 0.3 * np.sin(theta)
        ax.arrow(x, y, dx, dy, head_width=0.1, head_length=0.2, fc='r', ec='r')

        # Weighted kernel density estimate of the particle positions,
        # needs at least two particles carrying weight
        if self.num_particles > 20 and np.count_nonzero(weights > 0) >= 2:
            try:
                kde = gaussian_kde(poses[:, :2].T, weights=weights)

                x_grid = np.linspace(poses[:, 0].min(), poses[:, 0].max(), 100)
                y_grid = np.linspace(poses[:, 1].min(), poses[:, 1].max(), 100)
                X, Y = np.meshgrid(x_grid, y_grid)
                positions = np.vstack([X.ravel(), Y.ravel()])

                Z = kde(positions).reshape(X.shape)
                ax.contour(X, Y, Z, cmap='viridis', alpha=0.3)
            except np.linalg.LinAlgError:
                pass  # Particles collapsed onto a line or point

        ax.set_aspect('equal')
        ax.set_title('Monte Carlo Localization Belief')
        ax.set_xlabel('X')
        ax.set_ylabel('Y')
        ax.legend()

        return ax
