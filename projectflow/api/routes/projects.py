from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from projectflow.db.session import get_db
from projectflow.models.project import Project
from projectflow.schemas.project import GeneratedInstances, ProjectCreate, ProjectPublic
from projectflow.schemas.task import TaskPublic
from projectflow.services import recurring_tasks

router = APIRouter()


def _get_project_or_404(db: Session, project_id: str) -> Project:
    project = db.get(Project, project_id)
    if not project:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Project not found",
        )
    return project


@router.get("/", response_model=list[ProjectPublic])
def list_projects(db: Session = Depends(get_db)) -> list[Project]:
    return db.query(Project).order_by(Project.created_at.asc()).all()


@router.post("/", response_model=ProjectPublic, status_code=status.HTTP_201_CREATED)
def create_project(payload: ProjectCreate, db: Session = Depends(get_db)) -> Project:
    project = Project(**payload.model_dump())
    db.add(project)
    db.commit()
    db.refresh(project)
    return project


@router.get("/{project_id}", response_model=ProjectPublic)
def get_project(project_id: str, db: Session = Depends(get_db)) -> Project:
    return _get_project_or_404(db, project_id)


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_project(project_id: str, db: Session = Depends(get_db)) -> None:
    project = _get_project_or_404(db, project_id)
    db.delete(project)
    db.commit()


@router.post("/{project_id}/generate-due", response_model=GeneratedInstances)
def generate_due_instances(
    project_id: str,
    days_ahead: int | None = Query(default=None, ge=0),
    db: Session = Depends(get_db),
) -> GeneratedInstances:
    """Backfill recurring instances due within the horizon. Safe to call repeatedly."""
    project = _get_project_or_404(db, project_id)
    created = recurring_tasks.generate_due_instances(db, project, days_ahead)
    return GeneratedInstances(
        project_id=project.id,
        generated=[TaskPublic.model_validate(task) for task in created],
    )
