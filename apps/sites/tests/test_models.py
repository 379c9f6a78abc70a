import pytest
from apps.sites.models import Site, SiteGroup


@pytest.mark.django_db
class TestSiteGroup:

    def test_has_site(self):
        group = SiteGroup.objects.create(name='North Cluster')
        member = Site.objects.create(name='Site A', group=group)
        outsider = Site.objects.create(name='Site B')

        assert group.has_site(member)
        assert not group.has_site(outsider)

    def test_deleting_group_detaches_sites(self):
        group = SiteGroup.objects.create(name='South Cluster')
        site = Site.objects.create(name='Site C', group=group)

        group.delete()
        site.refresh_from_db()

        assert site.group is None
        assert str(site) == 'Site C'
