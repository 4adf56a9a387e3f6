from matchbot.keyboards.callbacks import (
    MainMenuCb,
    WizardCb,
    ActivityCb,
    GameCb,
    EquipmentCb,
    VenueCb,
    MatchCb,
)
from matchbot.keyboards.main_menu import main_menu, back_to_main
from matchbot.keyboards.wizard_kb import (
    category_kb,
    game_settings_kb,
    location_kb,
    schedule_kb,
    equipment_kb,
    review_kb,
    cancel_input_kb,
    location_request_kb,
)
from matchbot.keyboards.venue_kb import venue_page_kb, venue_detail_kb, venue_retry_kb, RANK_EMOJI
from matchbot.keyboards.match_kb import (
    my_matches_kb,
    organizer_match_kb,
    cancel_confirm_kb,
    open_matches_kb,
    join_match_kb,
)

__all__ = [
    # callbacks
    "MainMenuCb", "WizardCb", "ActivityCb", "GameCb", "EquipmentCb", "VenueCb", "MatchCb",
    # main menu
    "main_menu", "back_to_main",
    # wizard
    "category_kb", "game_settings_kb", "location_kb", "schedule_kb",
    "equipment_kb", "review_kb", "cancel_input_kb", "location_request_kb",
    # venues
    "venue_page_kb", "venue_detail_kb", "venue_retry_kb", "RANK_EMOJI",
    # matches
    "my_matches_kb", "organizer_match_kb", "cancel_confirm_kb",
    "open_matches_kb", "join_match_kb",
]
