"""Shared names for Firestore collections, chat kinds and message types."""

# Firestore collection names
USERS = 'users'
DOUBTS = 'doubts'
PAPERS = 'papers'
MESSAGES = 'messages'
PAPER_MESSAGES = 'paperMessages'
CONVERSATIONS = 'conversations'
SUPPORT_CONVERSATIONS = 'supportConversations'
RATINGS = 'ratings'
WARNINGS = 'warnings'
SETTINGS = 'settings'
POLLS = 'polls'

# Sub-collections
TOPICS_SUB = 'topics'
FAQS_SUB = 'faqs'
MESSAGES_SUB = 'messages'

# Chat kinds
CHAT_DOUBT = 'doubt'
CHAT_GROUP = 'group'
CHAT_DM = 'dm'
CHAT_SUPPORT = 'support'
CHAT_KINDS = (CHAT_DOUBT, CHAT_GROUP, CHAT_DM, CHAT_SUPPORT)

# Message types
MSG_TEXT = 'text'
MSG_IMAGE = 'image'
MSG_AUDIO = 'audio'
MSG_FILE = 'file'
MSG_VIDEO = 'video'
MSG_POLL = 'poll'
MSG_SYSTEM = 'system'
MESSAGE_TYPES = (MSG_TEXT, MSG_IMAGE, MSG_AUDIO, MSG_FILE, MSG_VIDEO, MSG_POLL, MSG_SYSTEM)

# Doubt statuses
STATUS_UNASSIGNED = 'unassigned'
STATUS_ASSIGNED = 'assigned'
STATUS_RESOLVED = 'resolved'

SYSTEM_SENDER_ID = 'system'
DEFAULT_GROUP_TOPIC = 'general'
DEFAULT_STAFF_NAME = 'Faculty Member'
MIN_POLL_OPTIONS = 2

# Support team ids double as the staff role that answers them
SUPPORT_TEAMS = ('technical_support', 'coordinator')

# Realtime Database paths
PRESENCE_ROOT = 'status'
