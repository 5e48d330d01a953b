from __future__ import annotations

import os
import tempfile
import threading
import unittest

from sqlalchemy import select

from factories import make_session_factory, make_user
from gatehouse.models import PushToken, UserRole
from gatehouse.services.push_token_service import (
    deactivate_tokens,
    list_active_tokens,
    register_token,
    unregister_token,
)

DEVICE_TOKEN = 'device-token-0123456789'


class PushTokenServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, self.SessionLocal = make_session_factory()
        self.db = self.SessionLocal()
        self.alice = make_user(self.db, role=UserRole.RESIDENT, phone='555-0001')
        self.bob = make_user(self.db, role=UserRole.RESIDENT, phone='555-0002')

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def _rows(self) -> list[PushToken]:
        return self.db.execute(select(PushToken).execution_options(populate_existing=True)).scalars().all()

    def test_register_creates_active_token(self) -> None:
        register_token(self.db, user_id=self.alice.id, token=DEVICE_TOKEN, device_type='android')
        rows = self._rows()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].user_id, self.alice.id)
        self.assertEqual(rows[0].device_type, 'android')
        self.assertTrue(rows[0].is_active)

    def test_register_defaults_device_type_to_web(self) -> None:
        register_token(self.db, user_id=self.alice.id, token=DEVICE_TOKEN, device_type=None)
        self.assertEqual(self._rows()[0].device_type, 'web')

    def test_reassignment_leaves_exactly_one_active_owner(self) -> None:
        register_token(self.db, user_id=self.alice.id, token=DEVICE_TOKEN, device_type='web')
        register_token(self.db, user_id=self.bob.id, token=DEVICE_TOKEN, device_type='web')

        self.assertEqual(list_active_tokens(self.db, user_id=self.alice.id), [])
        self.assertEqual(list_active_tokens(self.db, user_id=self.bob.id), [DEVICE_TOKEN])
        active_rows = [row for row in self._rows() if row.is_active]
        self.assertEqual(len(active_rows), 1)

    def test_reregistering_inactive_token_reactivates_it(self) -> None:
        register_token(self.db, user_id=self.alice.id, token=DEVICE_TOKEN, device_type='web')
        unregister_token(self.db, token=DEVICE_TOKEN)
        self.assertEqual(list_active_tokens(self.db, user_id=self.alice.id), [])

        register_token(self.db, user_id=self.alice.id, token=DEVICE_TOKEN, device_type='ios')
        self.assertEqual(list_active_tokens(self.db, user_id=self.alice.id), [DEVICE_TOKEN])
        self.assertEqual(len(self._rows()), 1)

    def test_user_may_hold_several_active_tokens(self) -> None:
        register_token(self.db, user_id=self.alice.id, token=DEVICE_TOKEN, device_type='web')
        register_token(self.db, user_id=self.alice.id, token='second-device-token-xyz', device_type='android')
        self.assertEqual(
            list_active_tokens(self.db, user_id=self.alice.id),
            [DEVICE_TOKEN, 'second-device-token-xyz'],
        )

    def test_register_rejects_unknown_user(self) -> None:
        with self.assertRaises(ValueError):
            register_token(self.db, user_id=9999, token=DEVICE_TOKEN, device_type='web')
        self.assertEqual(self._rows(), [])

    def test_register_rejects_short_token(self) -> None:
        with self.assertRaises(ValueError):
            register_token(self.db, user_id=self.alice.id, token='short', device_type='web')

    def test_unregister_is_idempotent(self) -> None:
        register_token(self.db, user_id=self.alice.id, token=DEVICE_TOKEN, device_type='web')
        self.assertTrue(unregister_token(self.db, token=DEVICE_TOKEN))
        self.assertTrue(unregister_token(self.db, token=DEVICE_TOKEN))
        self.assertTrue(unregister_token(self.db, token='never-registered-token'))
        self.assertFalse(self._rows()[0].is_active)

    def test_deactivate_tokens_only_touches_listed_tokens(self) -> None:
        register_token(self.db, user_id=self.alice.id, token=DEVICE_TOKEN, device_type='web')
        register_token(self.db, user_id=self.alice.id, token='healthy-device-token', device_type='web')

        self.assertEqual(deactivate_tokens(self.db, [DEVICE_TOKEN]), 1)
        self.assertEqual(list_active_tokens(self.db, user_id=self.alice.id), ['healthy-device-token'])
        self.assertEqual(deactivate_tokens(self.db, []), 0)


class ConcurrentRegistrationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        path = os.path.join(self.tmpdir.name, 'tokens.sqlite3')
        self.engine, self.SessionLocal = make_session_factory(f'sqlite:///{path}')
        with self.SessionLocal() as db:
            self.user_ids = [
                make_user(db, role=UserRole.RESIDENT, phone=f'555-00{idx:02d}').id for idx in range(2)
            ]

    def tearDown(self) -> None:
        self.engine.dispose()
        self.tmpdir.cleanup()

    def test_two_users_claiming_one_device_leave_one_active_owner(self) -> None:
        barrier = threading.Barrier(2)
        errors: list[BaseException] = []

        def claim(user_id: int) -> None:
            with self.SessionLocal() as db:
                barrier.wait()
                try:
                    register_token(db, user_id=user_id, token=DEVICE_TOKEN, device_type='android')
                except Exception as exc:
                    errors.append(exc)

        threads = [threading.Thread(target=claim, args=(user_id,)) for user_id in self.user_ids]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        self.assertEqual(errors, [])
        with self.SessionLocal() as db:
            rows = db.execute(select(PushToken).where(PushToken.token == DEVICE_TOKEN)).scalars().all()
            active = [row for row in rows if row.is_active]
            self.assertEqual(len(rows), 1)
            self.assertEqual(len(active), 1)
            self.assertIn(active[0].user_id, self.user_ids)
            owners = [user_id for user_id in self.user_ids if list_active_tokens(db, user_id=user_id)]
            self.assertEqual(owners, [active[0].user_id])


if __name__ == '__main__':
    unittest.main()
