from sqlalchemy import select

from gatehouse.db import SessionLocal, engine
from gatehouse.models import Apartment, Base, Block, Flat, User, UserRole
from gatehouse.security.passwords import hash_password


def _ensure_user(db, *, name: str, phone: str, password: str, role: UserRole, flat: Flat | None = None) -> None:
    existing = db.execute(select(User).where(User.phone == phone)).scalar_one_or_none()
    if existing:
        return
    db.add(
        User(
            name=name,
            phone=phone,
            password_hash=hash_password(password),
            role=role,
            apartment_id=flat.apartment_id if flat else None,
            flat_id=flat.id if flat else None,
            is_approved=True,
        )
    )


def seed() -> None:
    Base.metadata.create_all(engine)
    with SessionLocal() as db:
        apartment = db.execute(select(Apartment).where(Apartment.name == 'Sunrise Residency')).scalar_one_or_none()
        if not apartment:
            apartment = Apartment(name='Sunrise Residency')
            db.add(apartment)
            db.flush()

        block = db.execute(
            select(Block).where(Block.apartment_id == apartment.id, Block.name == 'A')
        ).scalar_one_or_none()
        if not block:
            block = Block(apartment_id=apartment.id, name='A')
            db.add(block)
            db.flush()

        flats = []
        for number in ('101', '102'):
            unique_id = f'{block.name}{number}'
            flat = db.execute(select(Flat).where(Flat.unique_id == unique_id)).scalar_one_or_none()
            if not flat:
                flat = Flat(apartment_id=apartment.id, block_id=block.id, number=number, unique_id=unique_id)
                db.add(flat)
                db.flush()
            flats.append(flat)

        _ensure_user(db, name='Admin', phone='9000000001', password='adminpass', role=UserRole.ADMIN)
        _ensure_user(db, name='Gate Security', phone='9000000002', password='securitypass', role=UserRole.SECURITY)
        for idx, flat in enumerate(flats, start=1):
            _ensure_user(
                db,
                name=f'Resident {flat.unique_id}',
                phone=f'90000001{idx:02d}',
                password='residentpass',
                role=UserRole.RESIDENT,
                flat=flat,
            )

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
