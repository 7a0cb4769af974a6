import enum


class ChannelType(enum.Enum):
    facebook = "FACEBOOK"
    instagram = "INSTAGRAM"
    whatsapp = "WHATSAPP"
    webchat = "WEBCHAT"
    telegram = "TELEGRAM"
    email = "EMAIL"


# Channel types connected through the provider redirect handshake.
OAUTH_CHANNEL_TYPES = frozenset({ChannelType.facebook, ChannelType.instagram})


class ConversationStatus(enum.Enum):
    open = "OPEN"
    pending = "PENDING"
    resolved = "RESOLVED"
    closed = "CLOSED"


class Priority(enum.Enum):
    low = "LOW"
    medium = "MEDIUM"
    high = "HIGH"
    urgent = "URGENT"


class MessageDirection(enum.Enum):
    inbound = "INBOUND"
    outbound = "OUTBOUND"


class SenderType(enum.Enum):
    contact = "CONTACT"
    agent = "AGENT"
    ai = "AI"
    system = "SYSTEM"


class ContentType(enum.Enum):
    text = "TEXT"
    image = "IMAGE"
    video = "VIDEO"
    audio = "AUDIO"
    file = "FILE"
    location = "LOCATION"
    sticker = "STICKER"
    template = "TEMPLATE"


class MessageStatus(enum.Enum):
    pending = "PENDING"
    sent = "SENT"
    delivered = "DELIVERED"
    read = "READ"
    failed = "FAILED"


class Role(enum.Enum):
    owner = "OWNER"
    admin = "ADMIN"
    agent = "AGENT"
    viewer = "VIEWER"
