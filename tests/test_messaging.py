import pytest

from doubtdesk import constants as C
from doubtdesk import firestore_dao as dao
from doubtdesk.errors import (
    Unauthenticated, InvalidChatKind, ValidationError, PermissionDenied,
    NotFound, BackendUnavailable,
)
from doubtdesk.roles import Role, RoleDirectory
from doubtdesk.services import doubts, messaging

from tests.conftest import add_user


@pytest.fixture
def directory(db):
    return RoleDirectory(dao.get_user)


@pytest.fixture
def doubt_id(people):
    return doubts.create_doubt(people['student'], 'cs201', 'Pointer question', 'https://img/1.png')


def test_direct_conversation_id_is_order_independent():
    assert messaging.direct_conversation_id('b', 'a') == 'a_b'
    assert messaging.direct_conversation_id('a', 'b') == 'a_b'


def test_parse_support_conversation_id_handles_underscored_team():
    assert messaging.parse_support_conversation_id('stu1_technical_support') == ('stu1', 'technical_support')
    assert messaging.parse_support_conversation_id('stu1_coordinator') == ('stu1', 'coordinator')
    assert messaging.parse_support_conversation_id('stu1_nobody') == (None, None)


def test_send_requires_authenticated_user(db):
    with pytest.raises(Unauthenticated):
        messaging.send_message(None, 'cs201', C.CHAT_GROUP, 'hello')


def test_unknown_chat_kind_rejected_before_any_write(db, people):
    writes = db.write_count
    with pytest.raises(InvalidChatKind):
        messaging.send_message(people['student'], 'cs201', 'broadcast', 'hello')
    assert db.write_count == writes


def test_blank_content_and_system_type_rejected(db, people):
    with pytest.raises(ValidationError):
        messaging.send_message(people['student'], 'cs201', C.CHAT_GROUP, '   ')
    with pytest.raises(ValidationError):
        messaging.send_message(people['student'], 'cs201', C.CHAT_GROUP, 'hi', message_type=C.MSG_SYSTEM)
    with pytest.raises(ValidationError):
        messaging.send_message(people['faculty'], 'cs201', C.CHAT_GROUP, 'vote', message_type=C.MSG_POLL)


def test_group_message_defaults_to_general_topic(db, people):
    message_id = messaging.send_message(people['student'], 'cs201', C.CHAT_GROUP, 'hello all')

    stored = db.data(f'{C.PAPER_MESSAGES}/{message_id}')
    assert stored['paperId'] == 'cs201'
    assert stored['topicId'] == C.DEFAULT_GROUP_TOPIC
    assert stored['seenBy'] == ['stu1']
    assert stored['senderId'] == 'stu1'
    assert stored['timestamp'] is not None


def test_group_messages_are_scoped_to_their_topic(db, people):
    messaging.send_message(people['student'], 'cs201', C.CHAT_GROUP, 'general chat')
    messaging.send_message(people['student'], 'cs201', C.CHAT_GROUP, 'lists!', topic_id='lists')

    general = messaging.list_messages(people['student'], C.CHAT_GROUP, 'cs201')
    lists = messaging.list_messages(people['student'], C.CHAT_GROUP, 'cs201', topic_id='lists')
    assert [m['content'] for m in general] == ['general chat']
    assert [m['content'] for m in lists] == ['lists!']


def test_messages_are_read_in_timestamp_order(db, people):
    for text in ('one', 'two', 'three'):
        messaging.send_message(people['student'], 'cs201', C.CHAT_GROUP, text)

    messages = messaging.list_messages(people['student'], C.CHAT_GROUP, 'cs201')
    assert [m['content'] for m in messages] == ['one', 'two', 'three']

    latest = messaging.list_messages(people['student'], C.CHAT_GROUP, 'cs201', limit=2)
    assert [m['content'] for m in latest] == ['two', 'three']


def test_dm_message_updates_conversation_summary(db, people):
    conversation_id = messaging.start_direct_message(people['student'], 'fac1')
    messaging.send_message(people['student'], conversation_id, C.CHAT_DM, 'first')
    second_id = messaging.send_message(people['faculty'], conversation_id, C.CHAT_DM, 'second')

    conversation = dao.get_conversation(C.CHAT_DM, conversation_id)
    assert conversation['lastMessage']['id'] == second_id
    assert conversation['lastMessage']['content'] == 'second'
    assert conversation['participants'] == ['fac1', 'stu1']
    assert conversation['createdAt'] is not None
    assert conversation['updatedAt'] >= conversation['createdAt']


def test_dm_message_creates_conversation_lazily(db, people):
    conversation_id = messaging.direct_conversation_id('stu1', 'stu2')
    messaging.send_message(people['student'], conversation_id, C.CHAT_DM, 'hey')

    conversation = dao.get_conversation(C.CHAT_DM, conversation_id)
    assert conversation['participants'] == ['stu1', 'stu2']
    assert db.paths(f'{C.CONVERSATIONS}/{conversation_id}/{C.MESSAGES_SUB}/')


def test_dm_with_underscored_uid_keeps_its_members(db, people):
    alice = add_user('alice_x', Role.STUDENT, 'Alice')
    add_user('bob', Role.STUDENT, 'Bob')
    conversation_id = messaging.start_direct_message(alice, 'bob')

    messaging.send_message(alice, conversation_id, C.CHAT_DM, 'first')
    messaging.send_message(alice, conversation_id, C.CHAT_DM, 'second')

    conversation = dao.get_conversation(C.CHAT_DM, conversation_id)
    assert conversation['participants'] == ['alice_x', 'bob']
    assert conversation['lastMessage']['content'] == 'second'
    assert [row['id'] for row in dao.get_conversations_for_user('bob')] == [conversation_id]


def test_first_dm_message_with_underscored_uid_sets_members(db, people):
    bob = add_user('bob', Role.STUDENT, 'Bob')
    conversation_id = messaging.direct_conversation_id('alice_x', 'bob')
    messaging.send_message(bob, conversation_id, C.CHAT_DM, 'hi alice')

    conversation = dao.get_conversation(C.CHAT_DM, conversation_id)
    assert conversation['participants'] == ['alice_x', 'bob']
    assert conversation['createdAt'] is not None

    with pytest.raises(PermissionDenied):
        messaging.send_message(add_user('alice', Role.STUDENT, 'Al'), conversation_id, C.CHAT_DM, 'not me')


def test_start_direct_message_same_id_either_way(db, people):
    first = messaging.start_direct_message(people['student'], 'fac1')
    second = messaging.start_direct_message(people['faculty'], 'stu1')
    assert first == second
    assert len(db.paths(f'{C.CONVERSATIONS}/')) == 1


def test_start_direct_message_rejects_self_and_unknown(db, people):
    with pytest.raises(ValidationError):
        messaging.start_direct_message(people['student'], 'stu1')
    with pytest.raises(NotFound):
        messaging.start_direct_message(people['student'], 'ghost')


def test_outsider_cannot_post_into_dm(db, people):
    conversation_id = messaging.start_direct_message(people['student'], 'fac1')
    with pytest.raises(PermissionDenied):
        messaging.send_message(people['other_student'], conversation_id, C.CHAT_DM, 'sneaky')


def test_support_chat_summary_and_access(db, people):
    conversation_id = messaging.start_support_chat(people['student'], 'technical_support')
    assert conversation_id == 'stu1_technical_support'

    messaging.send_message(people['support'], conversation_id, C.CHAT_SUPPORT, 'How can we help?')
    conversation = dao.get_conversation(C.CHAT_SUPPORT, conversation_id)
    assert conversation['studentId'] == 'stu1'
    assert conversation['teamId'] == 'technical_support'
    assert conversation['lastMessage']['senderId'] == 'sup1'

    with pytest.raises(PermissionDenied):
        messaging.send_message(people['other_student'], conversation_id, C.CHAT_SUPPORT, 'me too')
    with pytest.raises(ValidationError):
        messaging.start_support_chat(people['student'], 'billing')


def test_student_cannot_post_into_someone_elses_doubt(db, people, doubt_id):
    with pytest.raises(PermissionDenied):
        messaging.send_message(people['other_student'], doubt_id, C.CHAT_DOUBT, 'hi')
    with pytest.raises(NotFound):
        messaging.send_message(people['student'], 'missing', C.CHAT_DOUBT, 'hi')


def test_student_post_does_not_claim_doubt(db, people, doubt_id):
    messaging.send_message(people['student'], doubt_id, C.CHAT_DOUBT, 'more detail')

    doubt = dao.get_doubt(doubt_id)
    assert doubt['status'] == C.STATUS_UNASSIGNED
    assert doubt['assignedFacultyId'] is None
    messages = messaging.list_messages(people['student'], C.CHAT_DOUBT, doubt_id)
    assert [m['messageType'] for m in messages] == [C.MSG_TEXT]


def test_backend_failure_surfaces_as_failed_to_send(db, people):
    db.fail_writes = True
    with pytest.raises(BackendUnavailable) as exc:
        messaging.send_message(people['student'], 'cs201', C.CHAT_GROUP, 'hello')
    assert 'Failed to send message' in exc.value.message


def test_mark_seen_only_grows(db, people):
    first = messaging.send_message(people['student'], 'cs201', C.CHAT_GROUP, 'one')
    second = messaging.send_message(people['student'], 'cs201', C.CHAT_GROUP, 'two')

    assert messaging.mark_seen(people['faculty'], C.CHAT_GROUP, 'cs201', [first, second]) == 2
    messaging.mark_seen(people['faculty'], C.CHAT_GROUP, 'cs201', [first])

    assert db.data(f'{C.PAPER_MESSAGES}/{first}')['seenBy'] == ['stu1', 'fac1']
    assert db.data(f'{C.PAPER_MESSAGES}/{second}')['seenBy'] == ['stu1', 'fac1']
    assert messaging.mark_seen(people['faculty'], C.CHAT_GROUP, 'cs201', []) == 0


def test_watch_messages_delivers_updates_until_unsubscribed(db, people):
    received = []
    watch = messaging.watch_messages(people['student'], C.CHAT_GROUP, 'cs201', received.append)
    messaging.send_message(people['student'], 'cs201', C.CHAT_GROUP, 'live')
    watch.unsubscribe()
    messaging.send_message(people['student'], 'cs201', C.CHAT_GROUP, 'after')

    assert received[0] == []
    assert [m['content'] for m in received[-1]] == ['live']


@pytest.mark.parametrize('last_message, expected', [
    (None, 'New conversation.'),
    ({'messageType': 'text', 'content': 'short'}, 'short'),
    ({'messageType': 'text', 'content': 'x' * 31}, 'x' * 30 + '...'),
    ({'messageType': 'text', 'content': 'x' * 30}, 'x' * 30),
    ({'messageType': 'image', 'content': 'https://img'}, 'Sent a image'),
    ({'messageType': 'text', 'content': 'hello', 'isForwarded': True}, '[Fwd] hello'),
])
def test_message_preview(last_message, expected):
    assert messaging.message_preview(last_message) == expected


def test_list_dm_conversations_newest_first(db, people, directory):
    with_faculty = messaging.start_direct_message(people['student'], 'fac1')
    with_peer = messaging.start_direct_message(people['student'], 'stu2')
    messaging.send_message(people['student'], with_faculty, C.CHAT_DM, 'latest news')

    entries = messaging.list_conversations(people['student'], C.CHAT_DM, directory)
    assert [e['id'] for e in entries] == [with_faculty, with_peer]
    assert entries[0]['chatTitle'] == 'Chat with Dr. Rao'
    assert entries[0]['lastMessage'] == 'latest news'
    assert entries[1]['chatTitle'] == 'Chat with Ben'
    assert entries[1]['lastMessage'] == 'New conversation.'


def test_list_support_conversations_for_team_and_student(db, people, directory):
    messaging.start_support_chat(people['student'], 'technical_support')
    messaging.start_support_chat(people['other_student'], 'coordinator')

    queue = messaging.list_conversations(people['support'], C.CHAT_SUPPORT, directory,
                                         team_id='technical_support')
    assert [e['chatTitle'] for e in queue] == ['Query from Asha']

    mine = messaging.list_conversations(people['student'], C.CHAT_SUPPORT, directory)
    assert [e['chatTitle'] for e in mine] == ['Chat with Technical Support']

    with pytest.raises(PermissionDenied):
        messaging.list_conversations(people['student'], C.CHAT_SUPPORT, directory,
                                     team_id='technical_support')
    with pytest.raises(InvalidChatKind):
        messaging.list_conversations(people['student'], C.CHAT_GROUP, directory)


def test_conversation_summary_holds_only_the_latest_message(db, people):
    conversation_id = messaging.start_direct_message(people['student'], 'fac1')
    messaging.send_message(people['student'], conversation_id, C.CHAT_DM,
                           'https://files/notes.pdf', message_type=C.MSG_FILE, file_name='notes.pdf')
    messaging.send_message(people['student'], conversation_id, C.CHAT_DM, 'see attached')

    last = dao.get_conversation(C.CHAT_DM, conversation_id)['lastMessage']
    assert last['content'] == 'see attached'
    assert 'fileName' not in last
