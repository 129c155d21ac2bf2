"""Tests for the administration CLI."""

import asyncio
import csv
import json
import pytest

from iftar_portal.cli import create_parser, main
from iftar_portal.database import (
    ParticipantRepository,
    PaymentRepository,
    create_async_engine,
    create_tables,
    get_async_session_factory,
)


@pytest.fixture
def database_url(tmp_path, monkeypatch):
    url = f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.setenv("CINETPAY_API_KEY", "")
    return url


def seed(database_url, with_payment=False):
    """Insert one participant, optionally with a pending gateway payment."""

    async def _seed():
        engine = create_async_engine(database_url)
        await create_tables(engine)
        async with get_async_session_factory(engine)() as session:
            participant = await ParticipantRepository(session).create(
                first_name="Awa",
                last_name="Sigué",
                email="awa.sigue@example.com",
                contact_number="+225 0701234567",
            )
            participant.sms_code = "SIG-1234"
            if with_payment:
                await PaymentRepository(session).create(
                    participant_id=participant.id,
                    amount=1000,
                    currency="XOF",
                    payment_method="wave",
                    transaction_id="tx-cli-000001",
                )
            await session.commit()
        await engine.dispose()

    asyncio.run(_seed())


class TestParser:
    """Tests for argument parsing."""

    def test_sweep_defaults(self):
        args = create_parser().parse_args(["sweep"])

        assert args.older_than == 0
        assert args.format == "json"
        assert args.summary_only is False

    def test_invalid_format(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["sweep", "--format", "xml"])

    def test_serve_defaults(self):
        args = create_parser().parse_args(["serve", "--port", "9000"])

        assert args.host == "0.0.0.0"
        assert args.port == 9000

    def test_no_command(self):
        assert main([]) == 1


class TestCommands:
    """Tests running the commands against a temporary database."""

    def test_init_db(self, database_url, tmp_path):
        assert main(["init-db"]) == 0
        assert (tmp_path / "cli.db").exists()

    def test_create_admin(self, database_url):
        assert main(["create-admin", "--email", "admin@iftar.test", "--password", "ramadan2026"]) == 0
        assert main(["create-admin", "--email", "admin@iftar.test", "--password", "ramadan2026"]) == 1

    def test_create_admin_short_password(self, database_url):
        assert main(["create-admin", "--email", "admin@iftar.test", "--password", "short"]) == 1

    def test_sweep_empty_database(self, database_url, tmp_path):
        output = tmp_path / "report.json"

        assert main(["sweep", "--output", str(output)]) == 0

        report = json.loads(output.read_text())
        assert report["statistics"]["total_checked"] == 0

    def test_sweep_unreachable_gateway(self, database_url, tmp_path):
        seed(database_url, with_payment=True)
        output = tmp_path / "report.json"

        assert main(["sweep", "--output", str(output)]) == 1

        report = json.loads(output.read_text())
        assert report["statistics"]["total_errors"] == 1

    def test_negative_older_than(self, database_url):
        assert main(["sweep", "--older-than", "-5"]) == 1

    def test_export(self, database_url, tmp_path):
        seed(database_url)
        output = tmp_path / "participants.csv"

        assert main(["export", "--output", str(output)]) == 0

        with open(output, encoding="utf-8", newline="") as f:
            rows = list(csv.DictReader(f))
        assert [row["Code SMS"] for row in rows] == ["SIG-1234"]
