"""Branch, Partner and Installer reference models.

Orders are routed to a branch, optionally fulfilled through a partner
company, and carried out by an installer.  Settlement periods are kept
per branch.
"""

from __future__ import annotations

from django.db import models

from modules.core.models import BaseModel


class Branch(BaseModel):
    code: models.CharField = models.CharField(max_length=20, unique=True)
    name: models.CharField = models.CharField(max_length=100)
    region: models.CharField = models.CharField(max_length=50, blank=True, default="")

    class Meta:
        db_table = "branches"
        ordering = ["code"]

    def __str__(self) -> str:
        return f"{self.code} ({self.name})"


class Partner(BaseModel):
    """Subcontracting company an order can be routed through."""

    code: models.CharField = models.CharField(max_length=20, unique=True)
    name: models.CharField = models.CharField(max_length=100)
    branch: models.ForeignKey = models.ForeignKey(
        "organization.Branch",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="partners",
    )

    class Meta:
        db_table = "partners"
        ordering = ["code"]

    def __str__(self) -> str:
        return f"{self.code} ({self.name})"


class Installer(BaseModel):
    name: models.CharField = models.CharField(max_length=100)
    phone: models.CharField = models.CharField(max_length=20, blank=True, default="")
    branch: models.ForeignKey = models.ForeignKey(
        "organization.Branch",
        on_delete=models.PROTECT,
        related_name="installers",
    )
    partner: models.ForeignKey = models.ForeignKey(
        "organization.Partner",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="installers",
    )
    is_active: models.BooleanField = models.BooleanField(default=True)

    class Meta:
        db_table = "installers"
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name
