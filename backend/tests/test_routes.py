"""
API tests for the detection routes.

Run with: pytest tests/test_routes.py -v
"""

import threading

from bizform.routes import detection
from bizform.services.detection_pipeline import PageSnapshot
from bizform.utils.pass_coordinator import PassCoordinator

from page_builders import scenario_a_tree, scenario_b_tree, snapshot_payload

CA_PORTAL = 'https://bizfileonline.sos.ca.gov/registration/llc'
BASE = '/api/v1/detection'


# ============================================================================
# Scanning
# ============================================================================

class TestScan:
    def test_scan_registration_page(self, client):
        response = client.post(
            f'{BASE}/pages/tab-1/scan',
            json=snapshot_payload(scenario_a_tree(), address=CA_PORTAL, title='Register a Business')
        )
        assert response.status_code == 200
        data = response.json()
        assert data['success'] is True
        assert data['deferred'] is False
        report = data['report']
        assert report['region'] == 'CA'
        assert report['stage'] == 'ready'
        assert report['summary']['ready'] is True
        categories = [f['classification']['category'] for f in report['sections'][0]['fields']]
        assert categories == ['business_name', 'tax_identifier', 'entity_type']

    def test_scan_unrelated_page(self, client):
        response = client.post(
            f'{BASE}/pages/tab-1/scan',
            json=snapshot_payload(scenario_b_tree(), address='https://www.example.com/survey')
        )
        report = response.json()['report']
        assert report['region'] is None
        assert report['stage'] == 'needs_improvement'
        assert report['summary']['classification_rate'] == 0

    def test_scan_requires_a_tree(self, client):
        response = client.post(f'{BASE}/pages/tab-1/scan', json={'address': CA_PORTAL})
        assert response.status_code == 422

    def test_summary_before_and_after_scan(self, client):
        before = client.get(f'{BASE}/pages/tab-9/summary').json()
        assert before['success'] is False
        assert before['error']['code'] == 'no_summary'

        client.post(f'{BASE}/pages/tab-9/scan', json=snapshot_payload(scenario_a_tree(), address=CA_PORTAL))
        after = client.get(f'{BASE}/pages/tab-9/summary').json()
        assert after['success'] is True
        assert after['context_id'] == 'tab-9'
        assert after['report']['region'] == 'CA'

    def test_status_counts_passes(self, client):
        client.post(f'{BASE}/pages/tab-1/scan', json=snapshot_payload(scenario_a_tree()))
        client.post(f'{BASE}/pages/tab-2/scan', json=snapshot_payload(scenario_a_tree()))
        status = client.get(f'{BASE}/status').json()
        assert status['contexts'] == 2
        assert status['passes_run'] == 2
        assert status['active_passes'] == 0


# ============================================================================
# Releasing page contexts
# ============================================================================

class TestRelease:
    def test_release_drops_the_page_report(self, client):
        client.post(f'{BASE}/pages/tab-5/scan', json=snapshot_payload(scenario_a_tree(), address=CA_PORTAL))

        response = client.delete(f'{BASE}/pages/tab-5')
        assert response.status_code == 200
        assert response.json() == {'success': True, 'context_id': 'tab-5', 'error': None}

        summary = client.get(f'{BASE}/pages/tab-5/summary').json()
        assert summary['error']['code'] == 'no_summary'
        assert client.get(f'{BASE}/status').json()['contexts'] == 0

    def test_release_unknown_page(self, client):
        data = client.delete(f'{BASE}/pages/never-scanned').json()
        assert data['success'] is False
        assert data['error']['code'] == 'unknown_context'

    def test_release_leaves_other_pages(self, client):
        client.post(f'{BASE}/pages/tab-1/scan', json=snapshot_payload(scenario_a_tree()))
        client.post(f'{BASE}/pages/tab-2/scan', json=snapshot_payload(scenario_a_tree()))
        client.delete(f'{BASE}/pages/tab-1')
        assert client.get(f'{BASE}/pages/tab-2/summary').json()['success'] is True

    def test_release_while_a_pass_is_running(self, client):
        started = threading.Event()
        release = threading.Event()

        def runner(snapshot):
            started.set()
            release.wait(5.0)
            return 'report'

        coordinator = PassCoordinator(runner)
        detection._coordinator_instance = coordinator
        worker = threading.Thread(target=coordinator.submit, args=('tab-7', PageSnapshot(tree={'tag': 'body'})))
        worker.start()
        assert started.wait(5.0)

        data = client.delete(f'{BASE}/pages/tab-7').json()
        release.set()
        worker.join(5.0)

        assert data['success'] is False
        assert data['error']['code'] == 'pass_active'
        assert client.delete(f'{BASE}/pages/tab-7').json()['success'] is True


# ============================================================================
# Knowledge
# ============================================================================

class TestPatterns:
    def test_common_table(self, client):
        data = client.get(f'{BASE}/patterns').json()
        assert data['region'] is None
        assert 'business_name' in data['categories']
        assert data['total_categories'] == len(data['categories'])

    def test_region_table_is_a_superset(self, client):
        common = client.get(f'{BASE}/patterns').json()['categories']
        california = client.get(f'{BASE}/patterns', params={'region': 'CA'}).json()
        assert california['region'] == 'CA'
        assert set(common) <= set(california['categories'])

    def test_invalid_region_code(self, client):
        response = client.get(f'{BASE}/patterns', params={'region': 'california'})
        assert response.status_code == 400

    def test_validate_region_document(self, client):
        valid = client.post(f'{BASE}/regions/validate', json={
            'business_name': {'patterns': ['entity\\s*name'], 'priority': 90}
        }).json()
        assert valid['valid'] is True
        assert valid['categories'] == ['business_name']

        invalid = client.post(f'{BASE}/regions/validate', json={
            'permit': {'patterns': ['(unclosed'], 'priority': 150}
        }).json()
        assert invalid['valid'] is False
        assert len(invalid['errors']) == 2


class TestHealth:
    def test_health(self, client):
        response = client.get('/api/health')
        assert response.status_code == 200
        assert response.json()['status'] == 'healthy'
