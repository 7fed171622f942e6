from sqlalchemy.orm import Session
from projectcore.db.session import SessionLocal
from projectcore.core.config import settings
from projectcore.core.logging import logger
from projectcore.crud.wbs import load_items, create_item, add_predecessor
from projectcore.schemas.wbs import WBSItemCreate, PredecessorIn

DEMO_TREE = [
    ("Design", [("Concept design", []), ("Detailed design", [])]),
    ("Construction", [("Foundations", []), ("Structure", []), ("Roofing", [])]),
    ("Handover", []),
]


def seed_demo():
    db: Session = SessionLocal()
    try:
        project_id, company_id = settings.DEMO_PROJECT_ID, settings.DEMO_COMPANY_ID
        if load_items(db, project_id):
            return
        previous = None
        for title, children in DEMO_TREE:
            stage = create_item(db, WBSItemCreate(company_id=company_id, project_id=project_id, title=title, level=0))
            for child_title, _ in children:
                child = create_item(db, WBSItemCreate(
                    company_id=company_id, project_id=project_id, title=child_title, level=1, parent_id=stage.id,
                ))
                if previous is not None:
                    add_predecessor(db, child.id, PredecessorIn(predecessor_id=previous.id))
                previous = child
        logger.info("demo_wbs_seeded", project_id=project_id)
    finally:
        db.close()
