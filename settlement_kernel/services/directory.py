"""
Service layer for the company/manager directory.

The settlement engine only reads the directory to take snapshots; the
``register_*`` methods exist so the owning back office (and tests) can
populate it.

Returns CompanyInfo / ManagerInfo DTOs instead of ORM entities.
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from settlement_kernel.domain.dtos import CompanyInfo, ManagerInfo
from settlement_kernel.exceptions import CompanyNotFoundError, ManagerNotFoundError
from settlement_kernel.models.directory import Company, Manager
from settlement_kernel.services.base import BaseService


class Directory(Protocol):
    """Inbound interface the engine needs from the company/user directory."""

    def get_company(self, company_id: UUID) -> CompanyInfo: ...

    def get_manager(self, manager_id: UUID) -> ManagerInfo: ...


class DirectoryService(BaseService[Company]):
    """Directory backed by the ``companies`` and ``managers`` tables."""

    def _company_dto(self, company: Company) -> CompanyInfo:
        return CompanyInfo(
            id=company.id,
            name=company.name,
            business_number=company.business_number,
            ceo_name=company.ceo_name,
            bank_code=company.bank_code,
            bank_account=company.bank_account,
            bank_account_holder=company.bank_account_holder,
        )

    def _manager_dto(self, manager: Manager) -> ManagerInfo:
        return ManagerInfo(
            id=manager.id,
            name=manager.name,
            email=manager.email,
            phone=manager.phone,
            company_id=manager.company_id,
        )

    def get_company(self, company_id: UUID) -> CompanyInfo:
        """
        Get a company by ID.

        Raises:
            CompanyNotFoundError: If the company doesn't exist.
        """
        company = self.session.get(Company, company_id)
        if company is None:
            raise CompanyNotFoundError(str(company_id))
        return self._company_dto(company)

    def get_manager(self, manager_id: UUID) -> ManagerInfo:
        """
        Get a manager by ID.

        Raises:
            ManagerNotFoundError: If the manager doesn't exist.
        """
        manager = self.session.get(Manager, manager_id)
        if manager is None:
            raise ManagerNotFoundError(str(manager_id))
        return self._manager_dto(manager)

    def register_company(
        self,
        name: str,
        business_number: str | None = None,
        ceo_name: str | None = None,
        bank_code: str | None = None,
        bank_account: str | None = None,
        bank_account_holder: str | None = None,
        actor_id: UUID | None = None,
    ) -> CompanyInfo:
        company = Company(
            name=name,
            business_number=business_number,
            ceo_name=ceo_name,
            bank_code=bank_code,
            bank_account=bank_account,
            bank_account_holder=bank_account_holder,
            created_by_id=actor_id,
        )
        self.session.add(company)
        self.session.flush()
        return self._company_dto(company)

    def register_manager(
        self,
        name: str,
        email: str | None = None,
        phone: str | None = None,
        company_id: UUID | None = None,
        actor_id: UUID | None = None,
    ) -> ManagerInfo:
        manager = Manager(
            name=name,
            email=email,
            phone=phone,
            company_id=company_id,
            created_by_id=actor_id,
        )
        self.session.add(manager)
        self.session.flush()
        return self._manager_dto(manager)

    def rename_company(self, company_id: UUID, name: str) -> CompanyInfo:
        """Rename a company.  Existing bundle snapshots are unaffected."""
        company = self.session.get(Company, company_id)
        if company is None:
            raise CompanyNotFoundError(str(company_id))
        company.name = name
        self.session.flush()
        return self._company_dto(company)
