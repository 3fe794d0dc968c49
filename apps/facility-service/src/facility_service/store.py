from __future__ import annotations

from dataclasses import asdict, replace
from datetime import datetime

from devkit.config import load_settings
from devkit.db import AsyncDatabaseManager, Base, create_all_tables, create_schema_if_not_exists, is_postgres_dsn
from devkit.timezone import JST_ZONE, now_jst
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    delete,
    func,
    select,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, selectinload

from facility_service.errors import StorageOperationError
from facility_service.models import (
    Availability,
    Facility,
    FacilityQuery,
    FacilityRecord,
    FacilityServiceLink,
    FacilityServiceRow,
    FacilityWithServices,
    Service,
    ServiceCategory,
)
from facility_service.validation import build_service_rows

_SETTINGS = load_settings("facility-service")
_DB_URL = _SETTINGS.DATABASE_URL
_DB_SCHEMA = "directory" if is_postgres_dsn(_DB_URL) else None
_TABLE_ARGS = {"schema": _DB_SCHEMA} if _DB_SCHEMA else {}
_FK_PREFIX = f"{_DB_SCHEMA}." if _DB_SCHEMA else ""

SERVICE_CATALOG: tuple[Service, ...] = (
    Service(1, "居宅介護", ServiceCategory.VISITING.value, "自宅での入浴・排せつ・食事の介護"),
    Service(2, "重度訪問介護", ServiceCategory.VISITING.value, "重度の障害がある方への総合的な訪問支援"),
    Service(3, "同行援護", ServiceCategory.VISITING.value, "視覚障害がある方の外出支援"),
    Service(4, "生活介護", ServiceCategory.DAYTIME_ACTIVITY.value, "日中の介護と創作的活動の提供"),
    Service(5, "短期入所", ServiceCategory.DAYTIME_ACTIVITY.value, "ショートステイ"),
    Service(6, "施設入所支援", ServiceCategory.RESIDENTIAL_FACILITY.value, "夜間の入浴・排せつ・食事の介護"),
    Service(7, "共同生活援助", ServiceCategory.GROUP_LIVING.value, "グループホームでの生活支援"),
    Service(8, "就労移行支援", ServiceCategory.TRAINING_EMPLOYMENT.value, "一般就労に向けた訓練"),
    Service(9, "就労継続支援B型", ServiceCategory.TRAINING_EMPLOYMENT.value, "雇用契約を結ばない就労の機会の提供"),
    Service(10, "放課後等デイサービス", ServiceCategory.CHILD_DAY_SUPPORT.value, "就学児の放課後の居場所と療育"),
    Service(11, "福祉型障害児入所施設", ServiceCategory.CHILD_RESIDENTIAL.value, "障害児の入所による保護と支援"),
    Service(12, "計画相談支援", ServiceCategory.CONSULTATION.value, "サービス等利用計画の作成"),
)


class ServiceORM(Base):
    __tablename__ = "services"
    __table_args__ = _TABLE_ARGS

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)


class FacilityORM(Base):
    __tablename__ = "facilities"
    __table_args__ = _TABLE_ARGS

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    profile_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    appeal_points: Mapped[str | None] = mapped_column(Text, nullable=True)
    address: Mapped[str] = mapped_column(String(500), nullable=False)
    district: Mapped[str] = mapped_column(String(32), index=True, nullable=False)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    phone_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    website_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, index=True, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True, nullable=False)

    facility_services: Mapped[list[FacilityServiceORM]] = relationship(
        back_populates="facility",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="FacilityServiceORM.id",
    )


class FacilityServiceORM(Base):
    __tablename__ = "facility_services"
    __table_args__ = (
        UniqueConstraint("facility_id", "service_id", name="uq_facility_services_facility_service"),
        CheckConstraint("availability IN ('available', 'unavailable')", name="ck_facility_services_availability"),
        CheckConstraint("capacity IS NULL OR capacity >= 0", name="ck_facility_services_capacity"),
        CheckConstraint("current_users >= 0", name="ck_facility_services_current_users"),
        CheckConstraint(
            "capacity IS NULL OR current_users <= capacity",
            name="ck_facility_services_within_capacity",
        ),
        _TABLE_ARGS,
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    facility_id: Mapped[int] = mapped_column(
        ForeignKey(f"{_FK_PREFIX}facilities.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    service_id: Mapped[int] = mapped_column(ForeignKey(f"{_FK_PREFIX}services.id"), nullable=False)
    availability: Mapped[str] = mapped_column(String(16), nullable=False, default=Availability.AVAILABLE.value)
    capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_users: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    facility: Mapped[FacilityORM] = relationship(back_populates="facility_services")
    service: Mapped[ServiceORM] = relationship()


def _seed_time(day: int) -> datetime:
    return datetime(2025, 4, day, 9, 0, tzinfo=JST_ZONE)


class FacilityStore:
    """Storage adapter for facilities, the service catalog and their associations.

    Without a database URL the store keeps dict-backed tables that enforce the
    same foreign key, uniqueness and capacity rules as the relational schema.
    """

    def __init__(self, database_url: str | None = _DB_URL, *, seed: bool = True) -> None:
        self._services: dict[int, Service] = {}
        self._facilities: dict[int, Facility] = {}
        self._links: dict[int, FacilityServiceLink] = {}
        self._next_facility_id = 1
        self._next_link_id = 1
        self._db = AsyncDatabaseManager(database_url, max_retries=_SETTINGS.DB_MAX_RETRIES) if database_url else None
        self._orm_ready = False
        if self._db is None:
            self._services = {item.id: item for item in SERVICE_CATALOG}
            if seed:
                self._seed_sample_facilities()

    @property
    def supports_transactions(self) -> bool:
        return self._db is not None

    async def fetch_facilities(self, query: FacilityQuery) -> list[FacilityWithServices]:
        if self._db is None:
            needle = query.name_contains.casefold() if query.name_contains else None
            matched = [
                item
                for item in self._facilities.values()
                if (not query.active_only or item.is_active)
                and (needle is None or needle in item.name.casefold())
                and (query.district is None or item.district == query.district)
            ]
            matched.sort(key=lambda item: (item.updated_at, item.id), reverse=True)
            return [self._with_services(item) for item in matched[: query.limit]]

        await self._ensure_orm_ready()

        async def _run(session):
            stmt = select(FacilityORM).options(
                selectinload(FacilityORM.facility_services).selectinload(FacilityServiceORM.service)
            )
            if query.active_only:
                stmt = stmt.where(FacilityORM.is_active.is_(True))
            if query.name_contains:
                stmt = stmt.where(FacilityORM.name.ilike(f"%{_escape_like(query.name_contains)}%", escape="\\"))
            if query.district is not None:
                stmt = stmt.where(FacilityORM.district == query.district)
            stmt = stmt.order_by(FacilityORM.updated_at.desc(), FacilityORM.id.desc()).limit(query.limit)
            rows = (await session.scalars(stmt)).all()
            return [self._to_entity(row) for row in rows]

        return await self._db.run_with_session(_run)

    async def get_facility(self, facility_id: int) -> FacilityWithServices | None:
        if self._db is None:
            item = self._facilities.get(facility_id)
            return self._with_services(item) if item else None

        await self._ensure_orm_ready()

        async def _run(session):
            stmt = (
                select(FacilityORM)
                .options(selectinload(FacilityORM.facility_services).selectinload(FacilityServiceORM.service))
                .where(FacilityORM.id == facility_id)
            )
            row = (await session.scalars(stmt)).one_or_none()
            return self._to_entity(row) if row else None

        return await self._db.run_with_session(_run)

    async def list_services(self) -> list[Service]:
        if self._db is None:
            return [self._services[key] for key in sorted(self._services)]

        await self._ensure_orm_ready()

        async def _run(session):
            rows = (await session.scalars(select(ServiceORM).order_by(ServiceORM.id))).all()
            return [_to_service(row) for row in rows]

        return await self._db.run_with_session(_run)

    async def insert_facility(self, record: FacilityRecord) -> Facility:
        if self._db is None:
            now = now_jst()
            facility = Facility(id=self._next_facility_id, **asdict(record), created_at=now, updated_at=now)
            self._facilities[facility.id] = facility
            self._next_facility_id += 1
            return replace(facility)

        await self._ensure_orm_ready()

        async def _run(session):
            now = now_jst()
            row = FacilityORM(**asdict(record), created_at=now, updated_at=now)
            session.add(row)
            await session.flush()
            return _to_facility(row)

        return await self._db.run_with_session(_run, retry=False)

    async def insert_facility_services(self, rows: list[FacilityServiceRow]) -> list[FacilityServiceLink]:
        """Insert association rows as one batch; either every row is stored or none is."""
        if self._db is None:
            self._check_link_batch(rows)
            created = []
            for row in rows:
                link = FacilityServiceLink(id=self._next_link_id, **asdict(row))
                self._links[link.id] = link
                self._next_link_id += 1
                created.append(replace(link))
            return created

        await self._ensure_orm_ready()

        async def _run(session):
            orm_rows = [FacilityServiceORM(**asdict(row)) for row in rows]
            session.add_all(orm_rows)
            await session.flush()
            return [_to_link(item) for item in orm_rows]

        return await self._db.run_with_session(_run, retry=False)

    async def insert_facility_with_services(
        self,
        record: FacilityRecord,
        service_ids: tuple[int, ...],
    ) -> tuple[Facility, list[FacilityServiceLink]]:
        """Insert a facility and its default associations inside one transaction."""
        if self._db is None:
            raise StorageOperationError("in-memory store does not provide cross-table transactions")

        await self._ensure_orm_ready()

        async def _run(session):
            now = now_jst()
            row = FacilityORM(**asdict(record), created_at=now, updated_at=now)
            session.add(row)
            await session.flush()
            orm_links = [FacilityServiceORM(**asdict(item)) for item in build_service_rows(row.id, service_ids)]
            session.add_all(orm_links)
            await session.flush()
            return _to_facility(row), [_to_link(item) for item in orm_links]

        return await self._db.run_with_session(_run, retry=False)

    async def delete_facility(self, facility_id: int) -> bool:
        """Delete a facility together with its associations; False when it did not exist."""
        if self._db is None:
            for link_id in [key for key, link in self._links.items() if link.facility_id == facility_id]:
                del self._links[link_id]
            return self._facilities.pop(facility_id, None) is not None

        await self._ensure_orm_ready()

        async def _run(session):
            await session.execute(delete(FacilityServiceORM).where(FacilityServiceORM.facility_id == facility_id))
            result = await session.execute(delete(FacilityORM).where(FacilityORM.id == facility_id))
            return bool(result.rowcount)

        return await self._db.run_with_session(_run, retry=False)

    async def close(self) -> None:
        if self._db is not None:
            await self._db.disconnect()
            self._orm_ready = False

    async def _ensure_orm_ready(self) -> None:
        if self._db is None or self._orm_ready:
            return

        await self._db.connect()
        if _DB_SCHEMA:
            await create_schema_if_not_exists(self._db.engine, _DB_SCHEMA)
        await create_all_tables(self._db.engine, Base.metadata)

        async def _seed_catalog_if_empty(session):
            count = int((await session.scalar(select(func.count()).select_from(ServiceORM))) or 0)
            if count > 0:
                return
            for item in SERVICE_CATALOG:
                session.add(ServiceORM(id=item.id, name=item.name, category=item.category, description=item.description))

        await self._db.run_with_session(_seed_catalog_if_empty)
        self._orm_ready = True

    def _check_link_batch(self, rows: list[FacilityServiceRow]) -> None:
        existing = {(link.facility_id, link.service_id) for link in self._links.values()}
        for row in rows:
            if row.facility_id not in self._facilities:
                raise StorageOperationError(f"facility {row.facility_id} does not exist")
            if row.service_id not in self._services:
                raise StorageOperationError(f"service {row.service_id} does not exist")
            pair = (row.facility_id, row.service_id)
            if pair in existing:
                raise StorageOperationError(f"duplicate facility service pair {pair}")
            existing.add(pair)
            if row.availability not in {item.value for item in Availability}:
                raise StorageOperationError(f"invalid availability {row.availability!r}")
            if row.current_users < 0 or (row.capacity is not None and not 0 <= row.current_users <= row.capacity):
                raise StorageOperationError(f"capacity constraint violated for service {row.service_id}")

    def _with_services(self, facility: Facility) -> FacilityWithServices:
        links = sorted(
            (link for link in self._links.values() if link.facility_id == facility.id),
            key=lambda link: link.id,
        )
        return FacilityWithServices(
            **vars(facility),
            facility_services=[replace(link, service=self._services.get(link.service_id)) for link in links],
        )

    def _seed_sample_facilities(self) -> None:
        samples = [
            (
                Facility(
                    id=1,
                    name="さくら就労支援センター",
                    address="東京都新宿区西新宿2-8-1",
                    district="新宿区",
                    description="一般就労を目指す方のための就労移行支援事業所です。",
                    phone_number="03-0000-0001",
                    created_at=_seed_time(1),
                    updated_at=_seed_time(3),
                ),
                [(8, Availability.AVAILABLE.value, 20, 12), (12, Availability.UNAVAILABLE.value, None, 0)],
            ),
            (
                Facility(
                    id=2,
                    name="ひまわりケアステーション",
                    address="東京都世田谷区世田谷4-21-27",
                    district="世田谷区",
                    description="居宅介護と同行援護を提供しています。",
                    created_at=_seed_time(1),
                    updated_at=_seed_time(2),
                ),
                [(1, Availability.AVAILABLE.value, None, 0), (3, Availability.AVAILABLE.value, 10, 4)],
            ),
            (
                Facility(
                    id=3,
                    name="あおぞらホーム",
                    address="東京都八王子市元本郷町3-24-1",
                    district="八王子市",
                    appeal_points="少人数で家庭的な雰囲気のグループホームです。",
                    created_at=_seed_time(1),
                    updated_at=_seed_time(1),
                ),
                [(7, Availability.UNAVAILABLE.value, 6, 6)],
            ),
        ]
        for facility, links in samples:
            self._facilities[facility.id] = facility
            for service_id, availability, capacity, current_users in links:
                link = FacilityServiceLink(
                    id=self._next_link_id,
                    facility_id=facility.id,
                    service_id=service_id,
                    availability=availability,
                    capacity=capacity,
                    current_users=current_users,
                )
                self._links[link.id] = link
                self._next_link_id += 1
        self._next_facility_id = max(self._facilities) + 1

    def _to_entity(self, row: FacilityORM) -> FacilityWithServices:
        return FacilityWithServices(
            **vars(_to_facility(row)),
            facility_services=[_to_link(item, with_service=True) for item in row.facility_services],
        )


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _to_service(row: ServiceORM) -> Service:
    return Service(id=row.id, name=row.name, category=row.category, description=row.description)


def _to_facility(row: FacilityORM) -> Facility:
    return Facility(
        id=row.id,
        name=row.name,
        address=row.address,
        district=row.district,
        description=row.description,
        appeal_points=row.appeal_points,
        phone_number=row.phone_number,
        website_url=row.website_url,
        image_url=row.image_url,
        latitude=row.latitude,
        longitude=row.longitude,
        profile_id=row.profile_id,
        is_active=row.is_active,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_link(row: FacilityServiceORM, *, with_service: bool = False) -> FacilityServiceLink:
    return FacilityServiceLink(
        id=row.id,
        facility_id=row.facility_id,
        service_id=row.service_id,
        availability=row.availability,
        capacity=row.capacity,
        current_users=row.current_users,
        service=_to_service(row.service) if with_service and row.service is not None else None,
    )
