from __future__ import annotations

import unittest

from sqlalchemy import select

from factories import RecordingConnection, make_flat, make_session_factory, make_user
from gatehouse.models import Notification, User, UserRole
from gatehouse.realtime.presence import PresenceRegistry
from gatehouse.security.passwords import hash_password
from gatehouse.services.account_service import (
    approve_resident,
    authenticate,
    list_pending_residents,
    register_user,
    reject_resident,
)
from gatehouse.services.mock_push_gateway import MockPushGateway
from gatehouse.services.notification_service import NotificationDispatcher


class AccountServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, self.SessionLocal = make_session_factory()
        self.db = self.SessionLocal()
        self.flat = make_flat(self.db, number='101')
        self.admin = make_user(self.db, role=UserRole.ADMIN, phone='555-0999')
        self.presence = PresenceRegistry()
        self.dispatcher = NotificationDispatcher(self.db, presence=self.presence, gateway=MockPushGateway())

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def _register(self, phone: str, *, role: str = 'resident', flat_id: int | None = None) -> User:
        return register_user(
            self.db,
            name=f'User {phone}',
            phone=phone,
            password='secret-pass',
            role=role,
            apartment_id=self.flat.apartment_id if role == 'resident' else None,
            flat_id=(flat_id or self.flat.id) if role == 'resident' else None,
            block_id=None,
            dispatcher=self.dispatcher,
            presence=self.presence,
        )

    def _notification_types(self, user_id: int) -> list[str]:
        rows = self.db.execute(select(Notification.type).where(Notification.user_id == user_id)).all()
        return [row[0] for row in rows]

    def test_resident_registration_is_pending_and_alerts_admins(self) -> None:
        admin_socket = RecordingConnection()
        self.presence.register(self.admin.id, 'admin', admin_socket)

        user = self._register('555-0101')

        self.assertFalse(user.is_approved)
        self.assertNotEqual(user.password_hash, 'secret-pass')
        self.assertEqual(self._notification_types(self.admin.id), ['new_user'])
        self.assertEqual(self._notification_types(user.id), ['pending_approval'])
        self.assertEqual(admin_socket.names(), ['notification', 'refresh_pending_users'])
        self.assertEqual([row['id'] for row in list_pending_residents(self.db)], [user.id])

    def test_staff_registration_is_approved_immediately(self) -> None:
        user = self._register('555-0900', role='security')
        self.assertTrue(user.is_approved)
        self.assertEqual(list_pending_residents(self.db), [])

    def test_registration_validation(self) -> None:
        self._register('555-0101')
        with self.assertRaises(ValueError):
            self._register('555-0101')
        with self.assertRaises(ValueError):
            self._register('555-0102', role='janitor')
        with self.assertRaises(ValueError):
            register_user(
                self.db,
                name='',
                phone='555-0103',
                password='x',
                role='resident',
                apartment_id=None,
                flat_id=None,
                block_id=None,
                dispatcher=self.dispatcher,
                presence=self.presence,
            )

    def test_flat_from_another_apartment_is_rejected(self) -> None:
        other_flat = make_flat(self.db, number='202', block_name='B')
        with self.assertRaises(ValueError):
            register_user(
                self.db,
                name='Mixed',
                phone='555-0104',
                password='secret-pass',
                role='resident',
                apartment_id=self.flat.apartment_id,
                flat_id=other_flat.id,
                block_id=None,
                dispatcher=self.dispatcher,
                presence=self.presence,
            )

    def test_full_flat_refuses_registration(self) -> None:
        for idx in range(4):
            make_user(self.db, role=UserRole.RESIDENT, phone=f'555-01{idx:02d}', flat=self.flat)
        with self.assertRaises(ValueError) as ctx:
            self._register('555-0199')
        self.assertEqual(str(ctx.exception), 'Flat already has maximum number of residents')

    def test_approval_rechecks_capacity(self) -> None:
        for idx in range(3):
            make_user(self.db, role=UserRole.RESIDENT, phone=f'555-01{idx:02d}', flat=self.flat)
        first = self._register('555-0150')
        second = self._register('555-0151')

        approve_resident(self.db, user_id=first.id, dispatcher=self.dispatcher, presence=self.presence)
        with self.assertRaises(ValueError) as ctx:
            approve_resident(self.db, user_id=second.id, dispatcher=self.dispatcher, presence=self.presence)
        self.assertEqual(str(ctx.exception), 'Flat is now full. Cannot approve user.')

    def test_approve_notifies_resident(self) -> None:
        user = self._register('555-0101')
        resident_socket = RecordingConnection()
        self.presence.register(user.id, 'resident', resident_socket)

        approve_resident(self.db, user_id=user.id, dispatcher=self.dispatcher, presence=self.presence)

        self.assertIn('user_approved', self._notification_types(user.id))
        self.assertEqual(resident_socket.names(), ['notification', 'user_approved'])
        payload = resident_socket.events[1][1]
        self.assertEqual(payload['flat'], {'id': self.flat.id, 'number': '101'})
        self.assertEqual(payload['block']['name'], 'A')
        with self.assertRaises(LookupError):
            approve_resident(self.db, user_id=user.id, dispatcher=self.dispatcher, presence=self.presence)

    def test_reject_deletes_pending_user(self) -> None:
        user = self._register('555-0101')
        reject_resident(self.db, user_id=user.id, presence=self.presence)

        self.assertIsNone(self.db.execute(select(User).where(User.phone == '555-0101')).scalar_one_or_none())
        with self.assertRaises(LookupError):
            reject_resident(self.db, user_id=self.admin.id, presence=self.presence)

    def test_authenticate(self) -> None:
        make_user(
            self.db, role=UserRole.SECURITY, phone='555-0900', password_hash=hash_password('gate-pass')
        )
        make_user(
            self.db,
            role=UserRole.RESIDENT,
            phone='555-0101',
            flat=self.flat,
            approved=False,
            password_hash=hash_password('home-pass'),
        )

        self.assertEqual(authenticate(self.db, phone='555-0900', password='gate-pass').role, UserRole.SECURITY)
        with self.assertRaises(ValueError):
            authenticate(self.db, phone='555-0900', password='wrong')
        with self.assertRaises(ValueError):
            authenticate(self.db, phone='555-0000', password='gate-pass')
        with self.assertRaises(PermissionError):
            authenticate(self.db, phone='555-0101', password='home-pass')


if __name__ == '__main__':
    unittest.main()
