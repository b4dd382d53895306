"""Appointment status state machine as a pure transition table."""

from ..errors import InvalidTransitionError
from ..models import AppointmentStatus


CONFIRM = "confirm"
COMPLETE = "complete"
CANCEL = "cancel"
NO_SHOW = "no_show"
RESCHEDULE = "reschedule"
ASSIGN_STAFF = "assign_staff"

ACTIONS = (CONFIRM, COMPLETE, CANCEL, NO_SHOW, RESCHEDULE, ASSIGN_STAFF)

TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
)

TRANSITIONS: dict[tuple[AppointmentStatus, str], AppointmentStatus] = {
    (AppointmentStatus.PENDING, CONFIRM): AppointmentStatus.CONFIRMED,
    (AppointmentStatus.CONFIRMED, COMPLETE): AppointmentStatus.COMPLETED,
    (AppointmentStatus.PENDING, CANCEL): AppointmentStatus.CANCELLED,
    (AppointmentStatus.CONFIRMED, CANCEL): AppointmentStatus.CANCELLED,
    (AppointmentStatus.CONFIRMED, NO_SHOW): AppointmentStatus.NO_SHOW,
    (AppointmentStatus.PENDING, RESCHEDULE): AppointmentStatus.PENDING,
    (AppointmentStatus.CONFIRMED, RESCHEDULE): AppointmentStatus.CONFIRMED,
    (AppointmentStatus.PENDING, ASSIGN_STAFF): AppointmentStatus.PENDING,
    (AppointmentStatus.CONFIRMED, ASSIGN_STAFF): AppointmentStatus.CONFIRMED,
}

DISPLAY_NAMES = {
    AppointmentStatus.PENDING: "Pending Confirmation",
    AppointmentStatus.CONFIRMED: "Confirmed",
    AppointmentStatus.COMPLETED: "Completed",
    AppointmentStatus.CANCELLED: "Cancelled",
    AppointmentStatus.NO_SHOW: "No Show",
}


def next_status(current: AppointmentStatus, action: str) -> AppointmentStatus:
    """Return the status reached by applying ``action``.

    Raises InvalidTransitionError (naming the current status) when the table has
    no entry for the pair.
    """
    current = AppointmentStatus(current)
    try:
        return TRANSITIONS[(current, action)]
    except KeyError:
        raise InvalidTransitionError(current.value, action) from None


def is_terminal(status: AppointmentStatus) -> bool:
    return AppointmentStatus(status) in TERMINAL_STATUSES


def allowed_actions(current: AppointmentStatus) -> list[str]:
    current = AppointmentStatus(current)
    return [action for action in ACTIONS if (current, action) in TRANSITIONS]


def display_name(status: AppointmentStatus) -> str:
    return DISPLAY_NAMES[AppointmentStatus(status)]
