"""Enumerations and reference data shared by the API and the database layer."""

from typing import Literal

Category = Literal["FIREARM", "AMMO", "FILAMENT", "INSTRUMENT", "OTHER"]
CATEGORIES: tuple[str, ...] = ("FIREARM", "AMMO", "FILAMENT", "INSTRUMENT", "OTHER")

AmmoUnit = Literal["ROUNDS", "BOX", "CASE"]
FirearmType = Literal["HANDGUN", "RIFLE", "SHOTGUN", "SBR", "SUPPRESSOR", "OTHER"]
FilamentMaterial = Literal[
    "PLA", "ABS", "PETG", "TPU", "ASA", "NYLON", "PC", "PLA_CF",
    "PETG_CF", "PA", "PA_CF", "PA6_GF", "PVA", "HIPS", "OTHER",
]
FilamentDiameter = Literal["1.75", "2.85"]
InstrumentType = Literal["GUITAR", "BASS", "AMPLIFIER", "PEDAL", "KEYBOARD", "OTHER"]

Channel = Literal["SMS", "WHATSAPP", "EMAIL"]
CHANNELS: tuple[str, ...] = ("SMS", "WHATSAPP", "EMAIL")

TripType = Literal["LEISURE", "WORK", "FLYING", "FAMILY"]
DayStatus = Literal[
    "WORKING_HOME",
    "WORKING_OFFICE",
    "TRAVEL",
    "VACATION",
    "WEEKEND_HOLIDAY",
    "PTO",
    "CHOICE_DAY",
]

DAY_STATUS_LABELS: dict[str, str] = {
    "WORKING_HOME": "Working (home)",
    "WORKING_OFFICE": "Working (office)",
    "TRAVEL": "Travel",
    "VACATION": "Vacation",
    "WEEKEND_HOLIDAY": "Weekend/Holiday",
    "PTO": "PTO",
    "CHOICE_DAY": "Choice Day",
}

CURRENCIES: tuple[str, ...] = ("USD", "EUR", "GBP", "CAD", "AUD", "JPY", "CHF", "MXN", "BRL")

CALIBER_GROUPS: dict[str, list[str]] = {
    "Handgun": [
        ".22 LR", ".22 WMR", ".380 ACP", "9mm Luger", "9mm Makarov",
        ".38 Special", ".357 Magnum", ".357 SIG", ".40 S&W", "10mm Auto",
        ".44 Magnum", ".44 Special", ".45 ACP", ".45 Colt", "5.7x28mm",
    ],
    "Rifle": [
        ".17 HMR", ".223 Remington", "5.56x45mm NATO", ".224 Valkyrie",
        "6mm ARC", "6.5 Creedmoor", "6.5 Grendel", "6.5 PRC",
        ".270 Winchester", "7mm-08 Remington", "7mm Remington Magnum",
        "7.62x39mm", "7.62x51mm NATO", ".308 Winchester", ".30-06 Springfield",
        ".300 Blackout", ".300 Win Mag", ".338 Lapua Magnum",
        ".30 Carbine", "5.45x39mm", ".50 BMG",
    ],
    "Shotgun": ["12 Gauge", "16 Gauge", "20 Gauge", "28 Gauge", ".410 Bore"],
    "Other": ["Other"],
}

CALIBERS: list[str] = [caliber for group in CALIBER_GROUPS.values() for caliber in group]
