import argparse
import json
import os
import sys

# Add project root to path to allow imports from 'app'
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from app.core.logging import configure_logging
from app.domain.visits.errors import DependencyError
from app.repositories.db import db_session
from app.services.dispatch_service import OutboxDispatcher, deliver_outbox, pending_outbox_ids
from app.services.sweep_service import send_feedback_followups, send_visit_reminders


def _deliver_inline(outbox_id: int) -> None:
    """Entrega na hora, sem broker (uso local)."""
    with db_session() as db:
        try:
            status = deliver_outbox(db, outbox_id)
            print(f"outbox {outbox_id}: {status.value if status else 'missing'}")
        except DependencyError as e:
            print(f"outbox {outbox_id}: falhou ({e.message}); continua pendente")


def _dispatcher(args) -> OutboxDispatcher:
    return OutboxDispatcher(enqueue=_deliver_inline) if args.inline else OutboxDispatcher()


def run_reminders(args):
    with db_session() as db:
        sent = send_visit_reminders(db, _dispatcher(args))
    print(json.dumps({"sent": sent}))


def run_followups(args):
    with db_session() as db:
        result = send_feedback_followups(db, _dispatcher(args))
    print(json.dumps(result))


def run_drain(args):
    with db_session() as db:
        ids = pending_outbox_ids(db, limit=args.limit)
    _dispatcher(args).publish(ids)
    print(json.dumps({"requeued": len(ids)}))


def main():
    parser = argparse.ArgumentParser(description="Varreduras periódicas de visitas e feedbacks.")
    parser.add_argument("--inline", action="store_true", help="Entregar o outbox no próprio processo (sem celery).")
    subparsers = parser.add_subparsers(dest="command", required=True)

    parser_rem = subparsers.add_parser("lembretes", help="Lembretes de visitas confirmadas para daqui a 24h.")
    parser_rem.set_defaults(func=run_reminders)

    parser_fu = subparsers.add_parser("followups", help="Follow-ups de feedbacks parados há mais de 24h.")
    parser_fu.set_defaults(func=run_followups)

    parser_drain = subparsers.add_parser("drain", help="Reenfileirar entregas pendentes do outbox.")
    parser_drain.add_argument("--limit", type=int, default=100, help="Máximo de linhas.")
    parser_drain.set_defaults(func=run_drain)

    args = parser.parse_args()
    configure_logging()
    args.func(args)


if __name__ == "__main__":
    main()
