"""Hierarchical progress accounting for nested, multi-phase operations.

Example: a global synchronize job gives each subscription one step. Inside a
subscription, discovering videos is a subtask worth that step, so the overall
bar keeps moving while a single big playlist is processed, without the job
needing to know every playlist size up front.
"""

from collections.abc import Callable

ProgressListener = Callable[[float, str], None]


class ProgressTracker:
    """Tracks progress of one level of an operation.

    Only one subtask may be open per level. Opening a new subtask or advancing
    finalizes the open one by adding its full weight.
    """

    def __init__(
        self,
        total_steps: float = 100,
        initial_steps: float = 0,
        listener: ProgressListener | None = None,
        parent: "ProgressTracker | None" = None,
    ) -> None:
        if total_steps <= 0:
            raise ValueError("total_steps must be positive")
        if initial_steps < 0:
            raise ValueError("initial_steps cannot be negative")

        self.total_steps = float(total_steps)
        self.steps = float(initial_steps)
        self._listener = listener
        self._parent = parent
        self._subtask: ProgressTracker | None = None
        self._subtask_weight = 0.0
        # Highest value ever returned by compute_progress()
        self._high_water = 0.0

    @property
    def subtask_weight(self) -> float:
        return self._subtask_weight

    @property
    def open_subtask(self) -> "ProgressTracker | None":
        return self._subtask

    def set_total_steps(self, total_steps: float) -> None:
        """Change the number of steps of this level.

        Raising the total after progress was reported would lower the raw ratio;
        the high-water mark keeps the reported value from going backwards.
        """
        if total_steps <= 0:
            raise ValueError("total_steps must be positive")
        self.total_steps = float(total_steps)

    def advance(self, steps: float = 1, message: str = "") -> None:
        """Advance a number of steps and notify listeners up the chain.

        Args:
            steps: Number of steps to add (>= 0)
            message: Text handed to listeners with the new progress
        """
        if steps < 0:
            raise ValueError("steps cannot be negative")

        self._finalize_subtask()
        self.steps += steps
        self._notify(message)

    def subtask(
        self,
        weight: float = 1,
        subtask_total: float = 100,
        subtask_initial: float = 0,
    ) -> "ProgressTracker":
        """Open a child tracker worth `weight` steps of this level.

        Args:
            weight: Steps of this level the subtask is worth
            subtask_total: Total steps of the child
            subtask_initial: Starting steps of the child

        Returns:
            The child tracker (its advance() calls notify through this one)
        """
        if weight < 0:
            raise ValueError("weight cannot be negative")

        self._finalize_subtask()
        self._subtask = ProgressTracker(
            total_steps=subtask_total,
            initial_steps=subtask_initial,
            parent=self,
        )
        self._subtask_weight = float(weight)
        return self._subtask

    def compute_progress(self) -> float:
        """Calculate progress of this level.

        Returns:
            Value in [0, 1]; never lower than a previously returned value
        """
        value = self.steps / self.total_steps
        if self._subtask is not None:
            value += (
                self._subtask.compute_progress()
                * self._subtask_weight
                / self.total_steps
            )
        value = min(max(value, 0.0), 1.0)
        self._high_water = max(self._high_water, value)
        return self._high_water

    def _finalize_subtask(self) -> None:
        # Previous subtask is assumed complete once the parent moves on
        if self._subtask is not None:
            self.steps += self._subtask_weight
            self._subtask = None
            self._subtask_weight = 0.0

    def _notify(self, message: str) -> None:
        if self._listener is not None:
            self._listener(self.compute_progress(), message)
        if self._parent is not None:
            self._parent._notify(message)
