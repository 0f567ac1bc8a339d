"""
Exception classes for the dashboard engine.

Two families of errors exist:
- Configuration errors (InvalidPresetError, DuplicatePaneError,
  UnknownPaneTypeError, UnknownPaneError) are raised synchronously to the
  caller that issued the operation and are never retried.
- Runtime data errors (PaneInitializationError, UpdateApplicationError) are
  captured into the affected pane's last_error and counted in metrics.
  They are never propagated to sibling panes.

All exceptions store their context data in attributes for error handling.
"""


class PaneboardError(Exception):
    """Base class for all dashboard engine errors."""


class InvalidPresetError(PaneboardError):
    """
    Raised when a layout preset name is not in the catalog.

    Attributes:
        preset: The requested preset name
        available: Names of the presets that do exist
    """

    def __init__(self, preset: str, available: list[str]) -> None:
        self.preset = preset
        self.available = available
        super().__init__(
            f"Invalid layout preset: {preset!r} "
            f"(available: {', '.join(available)})"
        )


class DuplicatePaneError(PaneboardError):
    """
    Raised when registering a pane id that is already registered.

    Attributes:
        pane_id: The pane that was registered twice
    """

    def __init__(self, pane_id: str) -> None:
        self.pane_id = pane_id
        super().__init__(f"Pane {pane_id!r} is already registered")


class UnknownPaneTypeError(PaneboardError):
    """
    Raised when registering a pane id with no known pane type.

    Attributes:
        pane_id: The pane that was requested
    """

    def __init__(self, pane_id: str) -> None:
        self.pane_id = pane_id
        super().__init__(f"Unknown pane type: {pane_id!r}")


class UnknownPaneError(PaneboardError):
    """
    Raised when updating a pane that is not registered.

    Attributes:
        pane_id: The pane that was targeted
    """

    def __init__(self, pane_id: str) -> None:
        self.pane_id = pane_id
        super().__init__(f"Pane {pane_id!r} is not registered")


class PaneInitializationError(PaneboardError):
    """
    Captured when a pane's initializer fails.

    Stored in PaneState.last_error; never raised to the registering caller.

    Attributes:
        pane_id: The pane whose initialization failed
        reason: Description of the underlying failure
    """

    def __init__(self, pane_id: str, reason: str) -> None:
        self.pane_id = pane_id
        self.reason = reason
        super().__init__(f"Pane {pane_id!r} failed to initialize: {reason}")


class UpdateApplicationError(PaneboardError):
    """
    Captured when applying an update to a pane fails.

    Stored in PaneState.last_error; the pane moves to the error phase until
    a later update succeeds.

    Attributes:
        pane_id: The pane whose update failed
        reason: Description of the underlying failure
    """

    def __init__(self, pane_id: str, reason: str) -> None:
        self.pane_id = pane_id
        self.reason = reason
        super().__init__(f"Update to pane {pane_id!r} failed: {reason}")
