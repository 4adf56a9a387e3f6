from aiogram.fsm.state import State, StatesGroup


class MatchWizardStates(StatesGroup):
    """FSM for the organizer's match-creation wizard."""
    step               = State()  # Inline step screen (buttons only)
    enter_name         = State()  # Text input: match title
    enter_address      = State()  # Text input: address (or a location pin)
    enter_schedule     = State()  # Text input: "2026-10-20 18:00-20:00"
    enter_participants = State()  # Text input: "22" or "22-30"
    choose_venues      = State()  # Paginated venue candidates → rank 1/2/3
