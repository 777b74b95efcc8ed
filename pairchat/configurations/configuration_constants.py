from __future__ import annotations

import dataclasses


@dataclasses.dataclass(frozen=True)
class MessageKinds:
    Text = "text"
    Image = "image"
    Audio = "audio"
    Gif = "gif"
    Sticker = "sticker"
    System = "system"


# Kinds a client may send. System messages are only produced by the server.
CLIENT_MESSAGE_KINDS = frozenset(
    {
        MessageKinds.Text,
        MessageKinds.Image,
        MessageKinds.Audio,
        MessageKinds.Gif,
        MessageKinds.Sticker,
    }
)

# Kinds relayed to the media forwarder (e.g. a moderation channel).
MEDIA_MESSAGE_KINDS = frozenset({MessageKinds.Image, MessageKinds.Audio})


@dataclasses.dataclass(frozen=True)
class MatchTypes:
    Interest = "interest"
    Random = "random"


@dataclasses.dataclass(frozen=True)
class CloseReasons:
    Inactivity = "inactivity"
    Admin = "admin"
    PartnerLeft = "partner_left"
    Empty = "empty"
    Banned = "banned"


# Tag stored for entries that supplied no interests at all.
NO_INTEREST = "__no_interest__"

SYSTEM_SENDER = "System"
DEFAULT_DISPLAY_NAME = "Stranger"


@dataclasses.dataclass(frozen=True)
class Defaults:
    """Policy constants. Every one of them can be overridden on RelayConfig."""

    MatchDelaySeconds = 3.0
    MinPrefixLength = 3
    HistorySize = 20
    InactivityTimeoutSeconds = 600.0
    InactivityWarningLeadSeconds = 180.0
    SweepIntervalSeconds = 60.0
    ReconnectGraceSeconds = 30.0
    DrainGraceSeconds = 30.0
    CollaboratorTimeoutSeconds = 2.0
    MaxInterests = 10
    MaxInterestLength = 40
    MaxDisplayNameLength = 32
    MaxFingerprintLength = 128
    MaxTextLength = 2000
