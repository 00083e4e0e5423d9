import asyncio

import pytest
from aiohttp import test_utils

from api import create_app
from errors import StoreError
from scheduler import IntervalScheduler


def client_for(app):
    return test_utils.TestClient(test_utils.TestServer(app))


class BrokenStore:
    async def execute(self, operation_name, **params):
        raise StoreError(operation_name, "disk I/O error")


@pytest.mark.asyncio
async def test_health():
    async with client_for(create_app(BrokenStore())) as client:
        resp = await client.get('/health')
        body = await resp.json()

    assert resp.status == 200
    assert body['status'] == 'ok'
    assert body['timestamp'].endswith('Z')


@pytest.mark.asyncio
async def test_articles_envelope_and_pagination(store, make_source, make_article):
    await store.execute('upsert_sources', sources=[make_source('example')])
    await store.execute('upsert_articles', articles=[
        make_article(f'https://example.com/{i}', pub_date=1_700_000_000 + i, categories=['tech'])
        for i in range(3)
    ])

    async with client_for(create_app(store)) as client:
        resp = await client.get('/api/articles', params={'limit': '2'})
        first = await resp.json()
        resp2 = await client.get('/api/articles', params={'limit': '2', 'after': str(first['pagination']['lastId'])})
        second = await resp2.json()

    assert resp.status == 200
    assert first['success'] is True
    assert len(first['data']) == 2
    assert first['pagination']['limit'] == 2
    assert first['pagination']['hasMore'] is True
    article = first['data'][0]
    assert article['link'] == 'https://example.com/2'
    assert article['pub_date'] == '2023-11-14T22:13:22Z'
    assert article['categories'] == ['tech']
    assert article['source']['id'] == 'example'

    assert [a['link'] for a in second['data']] == ['https://example.com/0']
    assert second['pagination']['hasMore'] is False


@pytest.mark.asyncio
async def test_articles_store_failure_is_generic_500():
    async with client_for(create_app(BrokenStore())) as client:
        resp = await client.get('/api/articles')
        body = await resp.json()

    assert resp.status == 500
    assert body == {'success': False, 'error': 'Failed to fetch articles'}


@pytest.mark.asyncio
async def test_post_sources_then_list(store):
    source = {
        'id': 'example',
        'name': 'Example',
        'url': 'https://example.com/feed.xml',
        'homepage': 'https://example.com',
        'category': 'news',
    }
    async with client_for(create_app(store)) as client:
        resp = await client.post('/api/sources', json=[source])
        created = await resp.json()
        listing = await (await client.get('/api/sources')).json()

    assert resp.status == 201
    assert created['success'] is True
    assert [s['id'] for s in listing['data']] == ['example']
    assert 'etag' not in listing['data'][0]


@pytest.mark.asyncio
async def test_post_too_many_sources_writes_nothing(store):
    sources = [
        {
            'id': f's-{i}',
            'name': f'Source {i}',
            'url': f'https://s{i}.example.com/feed',
            'homepage': f'https://s{i}.example.com',
            'category': 'news',
        }
        for i in range(51)
    ]
    async with client_for(create_app(store)) as client:
        resp = await client.post('/api/sources', json=sources)
        body = await resp.json()

    assert resp.status == 400
    assert body['success'] is False
    assert await store.execute('count_sources') == 0


@pytest.mark.asyncio
async def test_post_invalid_json(store):
    async with client_for(create_app(store)) as client:
        resp = await client.post('/api/sources', data='{not json', headers={'Content-Type': 'application/json'})

    assert resp.status == 400


@pytest.mark.asyncio
async def test_fetch_without_runner_is_404(store):
    async with client_for(create_app(store)) as client:
        resp = await client.post('/api/fetch')

    assert resp.status == 404


@pytest.mark.asyncio
async def test_fetch_runs_cycle_and_refuses_overlap(store):
    release = asyncio.Event()

    async def slow_cycle():
        await release.wait()
        return {'successful': 0, 'failed': 0}

    scheduler = IntervalScheduler(slow_cycle, interval_minutes=60, run_immediately=False)
    async with client_for(create_app(store, ingest_runner=scheduler)) as client:
        async def post_fetch():
            return await client.post('/api/fetch')

        first = asyncio.create_task(post_fetch())
        while not scheduler.is_running:
            await asyncio.sleep(0.01)

        busy = await client.post('/api/fetch')
        release.set()
        done = await first

        assert busy.status == 409
        assert done.status == 200
        assert (await done.json())['data'] == {'successful': 0, 'failed': 0}
