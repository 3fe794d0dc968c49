"""facility_0001_init

Create schema and tables:
- directory.services
- directory.facilities
- directory.facility_services
"""

from alembic import op

revision = "facility_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE SCHEMA IF NOT EXISTS directory")
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS directory.services (
          id INTEGER PRIMARY KEY,
          name VARCHAR(255) NOT NULL,
          category VARCHAR(64) NOT NULL,
          description TEXT NULL
        )
        """
    )
    op.execute("CREATE INDEX IF NOT EXISTS idx_services_category ON directory.services (category)")
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS directory.facilities (
          id SERIAL PRIMARY KEY,
          profile_id VARCHAR(128) NULL,
          name VARCHAR(255) NOT NULL,
          description TEXT NULL,
          appeal_points TEXT NULL,
          address VARCHAR(500) NOT NULL,
          district VARCHAR(32) NOT NULL,
          latitude DOUBLE PRECISION NULL,
          longitude DOUBLE PRECISION NULL,
          phone_number VARCHAR(32) NULL,
          website_url VARCHAR(500) NULL,
          image_url VARCHAR(500) NULL,
          is_active BOOLEAN NOT NULL DEFAULT TRUE,
          created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
          updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
        """
    )
    op.execute("CREATE INDEX IF NOT EXISTS idx_facilities_district ON directory.facilities (district)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_facilities_is_active ON directory.facilities (is_active)")
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_facilities_updated_at "
        "ON directory.facilities (updated_at DESC, id DESC)"
    )
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS directory.facility_services (
          id SERIAL PRIMARY KEY,
          facility_id INTEGER NOT NULL REFERENCES directory.facilities (id) ON DELETE CASCADE,
          service_id INTEGER NOT NULL REFERENCES directory.services (id),
          availability VARCHAR(16) NOT NULL DEFAULT 'available',
          capacity INTEGER NULL,
          current_users INTEGER NOT NULL DEFAULT 0,
          CONSTRAINT uq_facility_services_facility_service UNIQUE (facility_id, service_id),
          CONSTRAINT ck_facility_services_availability CHECK (availability IN ('available', 'unavailable')),
          CONSTRAINT ck_facility_services_capacity CHECK (capacity IS NULL OR capacity >= 0),
          CONSTRAINT ck_facility_services_current_users CHECK (current_users >= 0),
          CONSTRAINT ck_facility_services_within_capacity CHECK (capacity IS NULL OR current_users <= capacity)
        )
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_facility_services_facility_id "
        "ON directory.facility_services (facility_id)"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS directory.facility_services")
    op.execute("DROP TABLE IF EXISTS directory.facilities")
    op.execute("DROP TABLE IF EXISTS directory.services")
