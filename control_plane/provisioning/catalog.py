"""
Module Catalog

Canonical module hierarchy (module > submodule > component > action) that is
synced into every tenant store.
"""

from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional, Union

from pydantic import BaseModel, Field


class ActionDefinition(BaseModel):
    """Action a role may perform on a component."""

    code: str
    name: str
    description: Optional[str] = None
    is_active: bool = True


class ComponentDefinition(BaseModel):
    """Page, widget or feature inside a submodule."""

    code: str
    name: str
    description: Optional[str] = None
    type: str = "page"
    route: Optional[str] = None
    priority: int = 100
    is_active: bool = True
    actions: list[ActionDefinition] = Field(default_factory=list)


class SubModuleDefinition(BaseModel):
    """Functional area inside a module."""

    code: str
    name: str
    description: Optional[str] = None
    icon: Optional[str] = None
    route: Optional[str] = None
    priority: int = 100
    is_active: bool = True
    components: list[ComponentDefinition] = Field(default_factory=list)


class ModuleDefinition(BaseModel):
    """Top-level feature module."""

    code: str
    name: str
    scope: str = Field(default="tenant", description="tenant or platform")
    description: Optional[str] = None
    icon: Optional[str] = None
    route_prefix: Optional[str] = None
    category: str = "core_system"
    priority: int = 100
    is_active: bool = True
    is_core: bool = False
    version: str = "1.0.0"
    dependencies: list[str] = Field(default_factory=list)
    submodules: list[SubModuleDefinition] = Field(default_factory=list)

    def attributes(self) -> dict[str, Any]:
        """Module fields stored on the module row itself."""
        return self.model_dump(exclude={"submodules"})


class ModuleCatalog(ABC):
    """Source of canonical module definitions."""

    @abstractmethod
    def modules(self) -> list[ModuleDefinition]:
        """Return every known module definition."""

    def tenant_modules(self) -> list[ModuleDefinition]:
        """Modules that belong in tenant stores."""
        return [module for module in self.modules() if module.scope == "tenant"]


class StaticModuleCatalog(ModuleCatalog):
    """Catalog built from in-memory definitions."""

    def __init__(self, definitions: Iterable[Union[ModuleDefinition, dict[str, Any]]]):
        self._modules = [
            definition if isinstance(definition, ModuleDefinition) else ModuleDefinition(**definition)
            for definition in definitions
        ]

    def modules(self) -> list[ModuleDefinition]:
        return list(self._modules)


DEFAULT_MODULES: list[dict[str, Any]] = [
    {
        "code": "core",
        "name": "Core",
        "description": "Users, roles and workspace settings",
        "icon": "HomeIcon",
        "route_prefix": "/tenant",
        "category": "core_system",
        "priority": 1,
        "is_core": True,
        "submodules": [
            {
                "code": "users",
                "name": "Users",
                "route": "/tenant/users",
                "priority": 1,
                "components": [
                    {
                        "code": "user-list",
                        "name": "User List",
                        "route": "/tenant/users",
                        "actions": [
                            {"code": "view", "name": "View Users"},
                            {"code": "create", "name": "Create User"},
                            {"code": "update", "name": "Update User"},
                            {"code": "delete", "name": "Delete User"},
                        ],
                    }
                ],
            },
            {
                "code": "roles",
                "name": "Roles",
                "route": "/tenant/roles",
                "priority": 2,
                "components": [
                    {
                        "code": "role-list",
                        "name": "Role List",
                        "route": "/tenant/roles",
                        "actions": [
                            {"code": "view", "name": "View Roles"},
                            {"code": "manage", "name": "Manage Roles"},
                        ],
                    }
                ],
            },
            {
                "code": "settings",
                "name": "Settings",
                "route": "/tenant/settings",
                "priority": 3,
                "components": [
                    {
                        "code": "general-settings",
                        "name": "General Settings",
                        "route": "/tenant/settings",
                        "actions": [
                            {"code": "view", "name": "View Settings"},
                            {"code": "update", "name": "Update Settings"},
                        ],
                    }
                ],
            },
        ],
    },
    {
        "code": "hr",
        "name": "Human Resources",
        "description": "Employees, departments, attendance and leave",
        "icon": "UserGroupIcon",
        "route_prefix": "/tenant/hr",
        "category": "human_resources",
        "priority": 10,
        "dependencies": ["core"],
        "submodules": [
            {
                "code": "employees",
                "name": "Employees",
                "route": "/tenant/hr/employees",
                "priority": 1,
                "components": [
                    {
                        "code": "employee-directory",
                        "name": "Employee Directory",
                        "route": "/tenant/hr/employees",
                        "actions": [
                            {"code": "view", "name": "View Employees"},
                            {"code": "create", "name": "Create Employee"},
                            {"code": "update", "name": "Update Employee"},
                            {"code": "delete", "name": "Delete Employee"},
                            {"code": "export", "name": "Export Employees"},
                        ],
                    },
                    {
                        "code": "org-chart",
                        "name": "Organization Chart",
                        "route": "/tenant/hr/org-chart",
                        "actions": [{"code": "view", "name": "View Org Chart"}],
                    },
                ],
            },
            {
                "code": "leave",
                "name": "Leave",
                "route": "/tenant/hr/leave",
                "priority": 2,
                "components": [
                    {
                        "code": "leave-requests",
                        "name": "Leave Requests",
                        "route": "/tenant/hr/leave",
                        "actions": [
                            {"code": "view", "name": "View Leave"},
                            {"code": "approve", "name": "Approve Leave"},
                        ],
                    }
                ],
            },
        ],
    },
    {
        "code": "platform",
        "name": "Platform Administration",
        "scope": "platform",
        "description": "Landlord-side tenant administration",
        "category": "platform",
        "priority": 0,
        "submodules": [
            {
                "code": "tenant_management",
                "name": "Tenants",
                "components": [
                    {
                        "code": "tenant_list",
                        "name": "All Tenants",
                        "actions": [
                            {"code": "view", "name": "View Tenants"},
                            {"code": "suspend", "name": "Suspend Tenant"},
                        ],
                    }
                ],
            }
        ],
    },
]


def default_catalog() -> StaticModuleCatalog:
    """Catalog of the modules bundled with the platform."""
    return StaticModuleCatalog(DEFAULT_MODULES)
