"""
End-to-end walk through the portal against an in-memory database and the
gateway simulator: a participant registers, pays through the checkout,
the gateway notification is reconciled and the participant is admitted
at the door with their SMS code. Emails and SMS are only logged.
"""
import asyncio

from iftar_portal.checkin import CheckInService
from iftar_portal.config import PortalConfig
from iftar_portal.connectors import SimulatorConfig, SimulatorConnector, SimulatorScenario
from iftar_portal.database import Base, create_async_engine, get_async_session_factory
from iftar_portal.reconciliation import GatewayNotification, ReconciliationService
from iftar_portal.registration import RegistrationService
from iftar_portal.services import PaymentService


async def run():
    config = PortalConfig(public_base_url="http://localhost:8000")
    simulator = SimulatorConnector(SimulatorConfig(site_id=config.cinetpay_site_id))

    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with get_async_session_factory(engine)() as session:
        participant = await RegistrationService(session, config=config).register(
            first_name="Awa",
            last_name="Sigué",
            email="awa.sigue@example.com",
            contact_number="+225 0701234567",
        )
        print("Registered:", participant.full_name, participant.sms_code)

        payment = await PaymentService(session, config=config, connector=simulator).initiate_gateway_payment(
            participant.id, payment_method="wave"
        )
        print("Checkout URL:", payment.payment_url)

        # The participant completes the checkout; the gateway posts its notification
        simulator.settle(payment.transaction_id, SimulatorScenario.ACCEPTED)
        notification = GatewayNotification.model_validate(simulator.build_notification(payment.transaction_id))
        outcome = await ReconciliationService(session, config=config).handle_notification(notification)
        print("Reconciled:", outcome.to_response())

        result = await CheckInService(session).check_in_by_code(participant.sms_code, checked_by="door-1")
        print("Checked in:", result.to_dict())
        await session.commit()

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(run())
