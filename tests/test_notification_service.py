from __future__ import annotations

import unittest
from unittest.mock import MagicMock

from sqlalchemy import select

from factories import RecordingConnection, make_flat, make_session_factory, make_user
from gatehouse.models import Notification, UserRole
from gatehouse.realtime.presence import PresenceRegistry
from gatehouse.services.mock_push_gateway import MockPushGateway
from gatehouse.services.notification_service import NotificationDispatcher, push_title_for
from gatehouse.services.push_token_service import list_active_tokens, register_token

LIVE_TOKEN = 'live-device-token-0001'
DEAD_TOKEN = 'dead-device-token-0002'
FLAKY_TOKEN = 'flaky-device-token-0003'


class NotificationDispatcherTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, self.SessionLocal = make_session_factory()
        self.db = self.SessionLocal()
        self.flat = make_flat(self.db, number='101')
        self.resident = make_user(self.db, role=UserRole.RESIDENT, phone='555-0101', flat=self.flat)
        self.presence = PresenceRegistry()
        self.gateway = MockPushGateway()
        self.dispatcher = NotificationDispatcher(self.db, presence=self.presence, gateway=self.gateway)

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def _notifications(self) -> list[Notification]:
        return self.db.execute(select(Notification).order_by(Notification.id.asc())).scalars().all()

    def test_persists_even_without_any_delivery_channel(self) -> None:
        notification = self.dispatcher.notify_new_visitor(self.resident.id, guest_name='Alice', flat_number='101', visit_id=3)

        self.assertIsNotNone(notification)
        rows = self._notifications()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].type, 'new_visitor')
        self.assertEqual(rows[0].message, 'New visitor Alice has arrived at Flat 101')
        self.assertEqual(rows[0].meta, {'guestName': 'Alice', 'flatNumber': '101', 'visitId': 3})
        self.assertFalse(rows[0].is_read)
        self.assertEqual(self.gateway.sent, [])

    def test_connected_user_receives_realtime_event(self) -> None:
        connection = RecordingConnection()
        self.presence.register(self.resident.id, 'resident', connection)

        notification = self.dispatcher.dispatch(self.resident.id, 'new_visitor', 'Someone is here', {'visitId': 1})

        self.assertEqual(connection.names(), ['notification'])
        payload = connection.events[0][1]
        self.assertEqual(payload['id'], notification.id)
        self.assertEqual(payload['metadata'], {'visitId': 1})

    def test_push_goes_to_every_active_token_with_string_data(self) -> None:
        register_token(self.db, user_id=self.resident.id, token=LIVE_TOKEN, device_type='android')
        register_token(self.db, user_id=self.resident.id, token='second-live-token-0004', device_type='web')

        notification = self.dispatcher.dispatch(self.resident.id, 'user_approved', 'Welcome', {'flat': None, 'count': 2})

        self.assertEqual([push.token for push in self.gateway.sent], [LIVE_TOKEN, 'second-live-token-0004'])
        push = self.gateway.sent[0]
        self.assertEqual(push.title, push_title_for('user_approved'))
        self.assertEqual(push.body, 'Welcome')
        self.assertEqual(
            push.data,
            {'type': 'user_approved', 'flat': '', 'count': '2', 'notificationId': str(notification.id)},
        )

    def test_dead_token_is_deactivated_and_others_stay_active(self) -> None:
        register_token(self.db, user_id=self.resident.id, token=LIVE_TOKEN, device_type='web')
        register_token(self.db, user_id=self.resident.id, token=DEAD_TOKEN, device_type='web')
        self.gateway.dead_tokens.add(DEAD_TOKEN)

        delivered = self.dispatcher.push_to_user(self.resident.id, title='Hi', body='There')

        self.assertEqual(delivered, 1)
        self.assertEqual(list_active_tokens(self.db, user_id=self.resident.id), [LIVE_TOKEN])

    def test_transient_failure_keeps_token_active(self) -> None:
        register_token(self.db, user_id=self.resident.id, token=FLAKY_TOKEN, device_type='web')
        self.gateway.unreachable_tokens.add(FLAKY_TOKEN)

        delivered = self.dispatcher.push_to_user(self.resident.id, title='Hi', body='There')

        self.assertEqual(delivered, 0)
        self.assertEqual(list_active_tokens(self.db, user_id=self.resident.id), [FLAKY_TOKEN])

    def test_gateway_exception_does_not_escape(self) -> None:
        register_token(self.db, user_id=self.resident.id, token=LIVE_TOKEN, device_type='web')
        broken = MagicMock()
        broken.send_many.side_effect = RuntimeError('provider down')
        dispatcher = NotificationDispatcher(self.db, presence=self.presence, gateway=broken)

        notification = dispatcher.dispatch(self.resident.id, 'new_visitor', 'Someone is here')

        self.assertIsNotNone(notification)
        self.assertEqual(len(self._notifications()), 1)

    def test_unknown_or_incomplete_recipient_is_skipped(self) -> None:
        self.assertIsNone(self.dispatcher.dispatch(9999, 'new_visitor', 'Nobody home'))
        self.assertIsNone(self.dispatcher.dispatch(None, 'new_visitor', 'Nobody home'))
        self.assertIsNone(self.dispatcher.dispatch(self.resident.id, 'new_visitor', ''))
        self.assertEqual(self._notifications(), [])

    def test_unknown_type_uses_generic_push_title(self) -> None:
        self.assertEqual(push_title_for('something_else'), 'New Notification')
        self.assertEqual(push_title_for('new_visitor'), 'New Visitor')

    def test_registration_wrappers_use_expected_types(self) -> None:
        admin = make_user(self.db, role=UserRole.ADMIN, phone='555-0900')
        self.dispatcher.notify_new_resident(
            admin.id, user_id=self.resident.id, user_name='Res', phone='555-0101', flat_label='A101'
        )
        self.dispatcher.notify_pending_approval(self.resident.id, user_name='Res')
        self.dispatcher.notify_resident_approved(self.resident.id, user_name='Res', flat_label='A101')
        self.dispatcher.notify_visit_rejected(admin.id, guest_name='Bob', flat_number='101', reason='Unknown')

        self.assertEqual(
            [(row.user_id, row.type) for row in self._notifications()],
            [
                (admin.id, 'new_user'),
                (self.resident.id, 'pending_approval'),
                (self.resident.id, 'user_approved'),
                (admin.id, 'visit_rejected'),
            ],
        )


if __name__ == '__main__':
    unittest.main()
