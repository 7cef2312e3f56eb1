import uuid

from sqlmodel import Session, select

from app.models.company import Company


class CompanyRepository:
    """Data access for buyer company profiles (balance holder)."""

    def get_by_user(self, session: Session, user_id: uuid.UUID) -> Company | None:
        stmt = select(Company).where(Company.user_id == user_id)
        return session.exec(stmt).first()

    def get_by_user_for_update(self, session: Session, user_id: uuid.UUID) -> Company | None:
        """Row-locked read used for balance read-modify-write."""
        stmt = (
            select(Company)
            .where(Company.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return session.exec(stmt).first()

    def update(self, session: Session, company: Company) -> Company:
        session.add(company)
        session.flush()
        return company
