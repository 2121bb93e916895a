import argparse
import os
import sys

# Add project root to path to allow imports from 'app'
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from sqlalchemy import select

from app.core.logging import configure_logging
from app.domain.visits.errors import VisitDomainError
from app.domain.visits.models import FeedbackStatus, VisitFeedback
from app.repositories.db import db_session
from app.services.report_service import ReportService


def main():
    parser = argparse.ArgumentParser(description="Regenera relatórios de feedbacks completos.")
    parser.add_argument("--feedback-id", type=int, action="append", help="Feedback específico (pode repetir).")
    parser.add_argument("--all", action="store_true", help="Todos os feedbacks completos.")
    parser.add_argument("--reports-dir", default=None, help="Diretório de saída (padrão: REPORTS_DIR).")
    args = parser.parse_args()

    if not args.feedback_id and not args.all:
        parser.error("informe --feedback-id ou --all")

    configure_logging()
    service = ReportService(reports_dir=args.reports_dir)
    ok = failed = 0
    with db_session() as db:
        ids = list(args.feedback_id or [])
        if args.all:
            ids += db.execute(
                select(VisitFeedback.id).where(VisitFeedback.status == FeedbackStatus.completo)
            ).scalars().all()
        for feedback_id in sorted(set(ids)):
            try:
                url, _ = service.generate_report(db, feedback_id)
                print(f"[ok] feedback {feedback_id}: {url}")
                ok += 1
            except VisitDomainError as e:
                db.rollback()
                print(f"[erro] feedback {feedback_id}: {e.code} - {e.message}")
                failed += 1

    print(f"Concluído: {ok} gerado(s), {failed} com erro.")
    return 0 if failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
