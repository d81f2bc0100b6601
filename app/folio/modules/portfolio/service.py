from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING

from sqlalchemy import select

from app.folio.modules.portfolio.models import Certification, Education, Experience, Project, Skill
from app.folio.utils import iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

FEATURED_PROJECTS_LIMIT = 6


def _d(value: date | None) -> str | None:
    return value.isoformat() if value else None


def serialize_project(p: Project) -> dict:
    return {
        "id": p.id,
        "title": p.title,
        "slug": p.slug,
        "description": p.description,
        "imageUrl": p.image_url,
        "githubUrl": p.github_url,
        "liveUrl": p.live_url,
        "isFeatured": p.is_featured,
        "sortOrder": p.sort_order,
        "technologies": [t.technology for t in p.technologies],
        "createdAt": iso(p.created_at),
    }


def list_projects(s: "Session", *, featured: bool = False) -> list[Project]:
    q = select(Project).where(Project.is_private.is_(False))
    if featured:
        q = q.where(Project.is_featured.is_(True)).limit(FEATURED_PROJECTS_LIMIT)
    q = q.order_by(Project.sort_order.asc(), Project.created_at.desc(), Project.id.desc())
    return list(s.execute(q).scalars().all())


def get_project_by_slug(s: "Session", slug: str) -> Project | None:
    return s.execute(
        select(Project).where(Project.slug == slug, Project.is_private.is_(False))
    ).scalar_one_or_none()


# ---------- Resume ----------
def skills_by_category(s: "Session") -> dict[str, list[dict]]:
    rows = s.execute(select(Skill).order_by(Skill.category, Skill.sort_order, Skill.name)).scalars().all()
    grouped: dict[str, list[dict]] = {}
    for sk in rows:
        grouped.setdefault(sk.category, []).append({"id": sk.id, "name": sk.name, "category": sk.category})
    return grouped


def serialize_experience(e: Experience) -> dict:
    return {
        "id": e.id,
        "title": e.title,
        "company": e.company,
        "location": e.location,
        "employmentType": e.employment_type,
        "startDate": _d(e.start_date),
        "endDate": _d(e.end_date),
        "isCurrent": e.is_current,
        "description": e.description,
        "highlights": [h.highlight for h in e.highlights],
        "technologies": [t.technology for t in e.technologies],
    }


def serialize_education(ed: Education) -> dict:
    return {
        "id": ed.id,
        "degree": ed.degree,
        "fieldOfStudy": ed.field_of_study,
        "school": ed.school,
        "location": ed.location,
        "startDate": _d(ed.start_date),
        "endDate": _d(ed.end_date),
        "description": ed.description,
    }


def serialize_certification(c: Certification) -> dict:
    return {
        "id": c.id,
        "name": c.name,
        "issuer": c.issuer,
        "issueDate": _d(c.issue_date),
        "expiryDate": _d(c.expiry_date),
        "credentialId": c.credential_id,
        "credentialUrl": c.credential_url,
    }


def resume_data(s: "Session") -> dict:
    """Everything the resume page renders, in display order."""
    experiences = s.execute(
        select(Experience).order_by(Experience.is_current.desc(), Experience.start_date.desc(), Experience.sort_order)
    ).scalars().all()
    education = s.execute(
        select(Education).order_by(Education.end_date.desc(), Education.sort_order)
    ).scalars().all()
    certifications = s.execute(
        select(Certification).order_by(Certification.issue_date.desc(), Certification.sort_order)
    ).scalars().all()
    return {
        "skills": skills_by_category(s),
        "experiences": [serialize_experience(e) for e in experiences],
        "education": [serialize_education(ed) for ed in education],
        "certifications": [serialize_certification(c) for c in certifications],
    }
