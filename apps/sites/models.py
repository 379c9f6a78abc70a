# ==========================================
# apps/sites/models.py
# ==========================================

from django.db import models
import uuid


class SiteGroup(models.Model):
    """Group of construction sites sharing material purchases."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'site_groups'
        ordering = ['name']

    def __str__(self):
        return self.name

    def has_site(self, site):
        return self.sites.filter(pk=site.pk).exists()


class Site(models.Model):
    """A construction site. Belongs to at most one site group."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200, unique=True)
    group = models.ForeignKey(
        SiteGroup,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='sites'
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'sites'
        indexes = [
            models.Index(fields=['group', 'name'], name='sites_group_name_idx'),
        ]
        ordering = ['name']

    def __str__(self):
        return self.name
