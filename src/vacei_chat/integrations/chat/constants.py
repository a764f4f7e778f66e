from __future__ import annotations

MESSAGES_SCHEMA = "public"
DIRECT_CONTEXT_TYPE = "DIRECT"
TEMP_ID_PREFIX = "temp-"
ROOM_ACCESS_ERROR = "Could not access chat room."

ENGAGEMENT_CHAT_ROOM_PATH = "/chat/engagements/{engagement_id}/room"
ROOMS_PATH = "/chat/rooms"
ROOM_PATH = "/chat/rooms/{room_id}"
ROOM_MEMBERS_PATH = "/chat/rooms/{room_id}/members"
ROOM_MEMBER_PATH = "/chat/rooms/{room_id}/members/{user_id}"
ROOM_MESSAGES_PATH = "/chat/rooms/{room_id}/messages"
ROOM_NOTIFY_MEMBERS_PATH = "/chat/rooms/{room_id}/notify-members"
ROOM_MARK_READ_PATH = "/chat/rooms/{room_id}/read"
ROOM_UNREAD_COUNT_PATH = "/chat/rooms/{room_id}/unread-count"
UNREAD_SUMMARY_PATH = "/chat/unread-summary"
UPLOAD_PATH = "/chat/upload"

REALTIME_PROTOCOL_VERSION = "1.0.0"
REALTIME_TOPIC_PREFIX = "realtime:"
PHOENIX_TOPIC = "phoenix"
