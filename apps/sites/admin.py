# ==========================================
# apps/sites/admin.py
# ==========================================

from django.contrib import admin
from apps.sites.models import SiteGroup, Site


class SiteInline(admin.TabularInline):
    """Inline admin for sites within a group."""
    model = Site
    extra = 0
    fields = ['name', 'is_active', 'created_at']
    readonly_fields = ['created_at']


@admin.register(SiteGroup)
class SiteGroupAdmin(admin.ModelAdmin):
    """Admin interface for Site Groups."""

    list_display = ['name', 'site_count', 'created_at']
    search_fields = ['name', 'description']
    readonly_fields = ['created_at', 'updated_at']
    inlines = [SiteInline]
    ordering = ['name']

    def site_count(self, obj):
        """Show number of sites."""
        return obj.sites.count()
    site_count.short_description = 'Sites'


@admin.register(Site)
class SiteAdmin(admin.ModelAdmin):
    """Admin interface for Sites."""

    list_display = ['name', 'group', 'is_active', 'created_at']
    list_filter = ['is_active', 'group']
    search_fields = ['name', 'group__name']
    readonly_fields = ['created_at', 'updated_at']
