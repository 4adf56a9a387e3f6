"""
Centralized CallbackData factories.
Telegram limits callback_data to 64 bytes — all prefixes are kept short.
"""
from aiogram.filters.callback_data import CallbackData


class MainMenuCb(CallbackData, prefix="mm"):
    action: str           # main | create | my_matches | join_list


class WizardCb(CallbackData, prefix="wz"):
    action: str           # next | prev | cancel | back | input | prefill | venues
    field: str = ""       # name | address | schedule | participants (action=input)


class ActivityCb(CallbackData, prefix="act"):
    activity: str


class GameCb(CallbackData, prefix="gm"):
    action: str           # mode | position | balance
    value: str = ""


class EquipmentCb(CallbackData, prefix="eq"):
    idx: int              # index into ActivityType.equipment_for(activity)


class VenueCb(CallbackData, prefix="vn"):
    action: str           # page | view | rank | clear | back
    vid: int = 0          # venue id
    page: int = 1
    rank: int = 0


class MatchCb(CallbackData, prefix="mt"):
    action: str           # view | join_view | join | cancel_ask | cancel_do
    mid: int = 0          # match id
