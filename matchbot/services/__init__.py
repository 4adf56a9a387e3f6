from matchbot.services.draft_store import (
    MatchDraft, MatchDraftStore, VenueRef, Coordinates, Schedule, TimeWindow,
    GameMode, DraftStatus, FsmDraftPersistence, MemoryDraftPersistence,
    DraftLockedError, DuplicateVenueError, RankOutOfRangeError,
    new_draft, prefill_from_previous,
)
from matchbot.services.step_gate import StepKind, validate
from matchbot.services.wizard import WizardController, WizardState, StepResult, step_sequence
from matchbot.services.latest_request import LatestOnly, RequestSequencer, Superseded
from matchbot.services.geocode_service import (
    GeocodeResolver, NaverGeocoder, KakaoGeocoder, default_providers,
)
from matchbot.services.venue_search import (
    VenueRankingSearch, SqlVenueDirectory, VenuePage, VenueSearchUnavailable, haversine_km,
)
from matchbot.services.reservation_service import (
    SqlReservationService, HoldRejected, available_slots,
)
from matchbot.services.provisional_service import (
    ProvisionalReservationCoordinator, ReservationHold, RankOutcome,
    CascadeResult, CascadeStatus, HoldState, HoldsLockedError,
)
from matchbot.services.match_service import (
    upsert_user, get_match, list_organizer_matches, list_open_matches,
    last_match_for_activity, template_from_match,
    abandon_publish, publish_match, join_match, threshold_reached, ThresholdTrigger,
    cancel_match, sweep_undersubscribed, ensure_holds_loaded,
)
from matchbot.services.notification_service import (
    md, format_match_card, format_hold_outcomes, format_cascade_result,
    notify_cascade_result, notify_match_cancelled, notify_player_joined,
)

__all__ = [
    # draft
    "MatchDraft", "MatchDraftStore", "VenueRef", "Coordinates", "Schedule", "TimeWindow",
    "GameMode", "DraftStatus", "FsmDraftPersistence", "MemoryDraftPersistence",
    "DraftLockedError", "DuplicateVenueError", "RankOutOfRangeError",
    "new_draft", "prefill_from_previous",
    # wizard
    "StepKind", "validate",
    "WizardController", "WizardState", "StepResult", "step_sequence",
    # latest-request guard
    "LatestOnly", "RequestSequencer", "Superseded",
    # geocoding
    "GeocodeResolver", "NaverGeocoder", "KakaoGeocoder", "default_providers",
    # venue search
    "VenueRankingSearch", "SqlVenueDirectory", "VenuePage", "VenueSearchUnavailable", "haversine_km",
    # reservations
    "SqlReservationService", "HoldRejected", "available_slots",
    "ProvisionalReservationCoordinator", "ReservationHold", "RankOutcome",
    "CascadeResult", "CascadeStatus", "HoldState", "HoldsLockedError",
    # match lifecycle
    "upsert_user", "get_match", "list_organizer_matches", "list_open_matches",
    "last_match_for_activity", "template_from_match",
    "abandon_publish", "publish_match", "join_match", "threshold_reached", "ThresholdTrigger",
    "cancel_match", "sweep_undersubscribed", "ensure_holds_loaded",
    # notifications
    "md", "format_match_card", "format_hold_outcomes", "format_cascade_result",
    "notify_cascade_result", "notify_match_cancelled", "notify_player_joined",
]
