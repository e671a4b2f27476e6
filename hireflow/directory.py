"""Read-only records the engine consults: definitions, people, postings."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import yaml
from pydantic import BaseModel, Field

from .contracts import WorkflowDefinition
from .errors import RecordNotFoundError


class Candidate(BaseModel):
    candidate_id: str
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    location: Optional[str] = None
    experience: Optional[str] = None
    profile: Optional[Dict[str, Any]] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class SalaryRange(BaseModel):
    currency: str = "USD"
    min: float
    max: float

    def __str__(self) -> str:
        return f"{self.currency} {self.min:g} - {self.max:g}"


class JobPosting(BaseModel):
    job_id: str
    company_id: str
    title: str
    department: Optional[str] = None
    hiring_manager_id: Optional[str] = None
    salary: Optional[SalaryRange] = None
    benefits: Optional[str] = None
    work_mode: Optional[str] = None
    skills_required: List[str] = Field(default_factory=list)


class Company(BaseModel):
    company_id: str
    name: str


class Employee(BaseModel):
    employee_id: str
    first_name: str
    last_name: str
    email: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Directory(Protocol):
    """Read access to records owned by the rest of the application."""

    async def get_definition(self, workflow_id: str) -> WorkflowDefinition | None:
        """Return a workflow definition by id."""

    async def get_candidate(self, candidate_id: str) -> Candidate | None:
        """Return a candidate by id."""

    async def get_job(self, job_id: str) -> JobPosting | None:
        """Return a job posting by id."""

    async def get_company(self, company_id: str) -> Company | None:
        """Return a company by id."""

    async def get_employee(self, employee_id: str) -> Employee | None:
        """Return an employee by id."""


class InMemoryDirectory:
    """Dictionary-backed :class:`Directory` used by tests and the CLI."""

    def __init__(self) -> None:
        self.definitions: Dict[str, WorkflowDefinition] = {}
        self.candidates: Dict[str, Candidate] = {}
        self.jobs: Dict[str, JobPosting] = {}
        self.companies: Dict[str, Company] = {}
        self.employees: Dict[str, Employee] = {}

    def add(self, record: BaseModel) -> None:
        if isinstance(record, WorkflowDefinition):
            self.definitions[record.workflow_id] = record
        elif isinstance(record, Candidate):
            self.candidates[record.candidate_id] = record
        elif isinstance(record, JobPosting):
            self.jobs[record.job_id] = record
        elif isinstance(record, Company):
            self.companies[record.company_id] = record
        elif isinstance(record, Employee):
            self.employees[record.employee_id] = record
        else:
            raise TypeError(f"Unsupported record type: {type(record).__name__}")

    async def get_definition(self, workflow_id: str) -> WorkflowDefinition | None:
        return self.definitions.get(workflow_id)

    async def get_candidate(self, candidate_id: str) -> Candidate | None:
        return self.candidates.get(candidate_id)

    async def get_job(self, job_id: str) -> JobPosting | None:
        return self.jobs.get(job_id)

    async def get_company(self, company_id: str) -> Company | None:
        return self.companies.get(company_id)

    async def get_employee(self, employee_id: str) -> Employee | None:
        return self.employees.get(employee_id)


async def require(directory: Directory, kind: str, record_id: str) -> Any:
    """Fetch a record or raise :class:`RecordNotFoundError`."""
    getter = {
        "candidate": directory.get_candidate,
        "job": directory.get_job,
        "company": directory.get_company,
        "employee": directory.get_employee,
    }[kind]
    record = await getter(record_id)
    if record is None:
        raise RecordNotFoundError(kind, record_id)
    return record


def load_definitions(path: str | Path) -> List[WorkflowDefinition]:
    """Load workflow definitions from a YAML document.

    The document is either a list of definitions or a mapping with a
    ``workflows`` key holding that list.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or []
    if isinstance(data, dict):
        data = data.get("workflows", [])
    return [WorkflowDefinition.model_validate(item) for item in data]


def load_directory(path: str | Path) -> InMemoryDirectory:
    """Build an :class:`InMemoryDirectory` from a YAML document.

    Recognized top-level keys: ``workflows``, ``candidates``, ``jobs``,
    ``companies`` and ``employees``, each holding a list of records.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    directory = InMemoryDirectory()
    models = {
        "workflows": WorkflowDefinition,
        "candidates": Candidate,
        "jobs": JobPosting,
        "companies": Company,
        "employees": Employee,
    }
    for key, model in models.items():
        for item in data.get(key, []):
            directory.add(model.model_validate(item))
    return directory
