import pytest

from errors import StoreError
from models import DatabaseQueue


@pytest.mark.asyncio
async def test_upsert_and_list_sources_ordered(store, make_source):
    await store.execute('upsert_sources', sources=[
        make_source('zeta', name='Zeta'),
        make_source('alpha-2', name='Alpha'),
        make_source('alpha-1', name='Alpha'),
    ])

    sources = await store.execute('list_sources')

    assert [s['id'] for s in sources] == ['alpha-1', 'alpha-2', 'zeta']
    assert await store.execute('count_sources') == 3


@pytest.mark.asyncio
async def test_source_upsert_replaces_fields_and_keeps_fetch_state(store, make_source):
    await store.execute('upsert_sources', sources=[make_source('example', name='Old')])
    await store.execute('set_fetch_info', source_id='example', etag='"v1"', fetched_at=1234)

    await store.execute('upsert_sources', sources=[make_source('example', name='New', locale='pt')])

    source = (await store.execute('list_sources'))[0]
    assert source['name'] == 'New'
    assert source['locale'] == 'pt'
    assert source['etag'] == '"v1"'
    assert source['last_fetched_at'] == 1234


@pytest.mark.asyncio
async def test_set_fetch_info_stores_missing_etag_as_none(store, make_source):
    await store.execute('upsert_sources', sources=[make_source('example')])
    await store.execute('set_fetch_info', source_id='example', etag='"v1"', fetched_at=1)
    await store.execute('set_fetch_info', source_id='example', etag=None, fetched_at=2)

    assert await store.execute('get_source_etag', source_id='example') is None
    assert await store.execute('get_source_etag', source_id='unknown') is None


@pytest.mark.asyncio
async def test_duplicate_links_are_ignored_not_updated(store, make_source, make_article):
    await store.execute('upsert_sources', sources=[make_source('example')])

    inserted = await store.execute('upsert_articles', articles=[
        make_article('https://example.com/a', title='First'),
        make_article('https://example.com/b'),
        make_article('https://example.com/a', title='Duplicate in batch'),
    ])
    assert inserted == 2

    again = await store.execute('upsert_articles', articles=[
        make_article('https://example.com/a', title='Changed title'),
    ])
    assert again == 0
    assert await store.execute('count_articles') == 2

    page = await store.execute('query_articles', limit=10)
    titles = {a['link']: a['title'] for a in page}
    assert titles['https://example.com/a'] == 'First'


@pytest.mark.asyncio
async def test_empty_batch_inserts_nothing(store):
    assert await store.execute('upsert_articles', articles=[]) == 0


@pytest.mark.asyncio
async def test_retention_deletes_strictly_older(store, make_source, make_article):
    await store.execute('upsert_sources', sources=[make_source('example')])
    await store.execute('upsert_articles', articles=[
        make_article('https://example.com/old', pub_date=100),
        make_article('https://example.com/edge', pub_date=200),
        make_article('https://example.com/new', pub_date=300),
    ])

    deleted = await store.execute('delete_articles_older_than', cutoff=200)

    assert deleted == 1
    remaining = {a['link'] for a in await store.execute('query_articles', limit=10)}
    assert remaining == {'https://example.com/edge', 'https://example.com/new'}


@pytest.mark.asyncio
async def test_query_filters_and_join(store, make_source, make_article):
    await store.execute('upsert_sources', sources=[
        make_source('en-site', locale='en', logo='https://en.example.com/logo.png'),
        make_source('pt-site', locale='pt'),
    ])
    await store.execute('upsert_articles', articles=[
        make_article('https://en.example.com/1', source_id='en-site', pub_date=100, categories=['tech', 'ai']),
        make_article('https://en.example.com/2', source_id='en-site', pub_date=200, categories=['sports']),
        make_article('https://pt.example.com/1', source_id='pt-site', pub_date=300, categories=['tech']),
    ])

    by_category = await store.execute('query_articles', limit=10, category='tech')
    assert [a['link'] for a in by_category] == ['https://pt.example.com/1', 'https://en.example.com/1']

    by_locale = await store.execute('query_articles', limit=10, locale='en')
    assert {a['source_id'] for a in by_locale} == {'en-site'}
    assert by_locale[0]['source'] == {
        'id': 'en-site',
        'name': 'En Site',
        'homepage': 'https://en-site.example.com',
        'locale': 'en',
        'logo': 'https://en.example.com/logo.png',
    }

    by_source = await store.execute('query_articles', limit=10, sources=['pt-site'])
    assert [a['source_id'] for a in by_source] == ['pt-site']

    since = await store.execute('query_articles', limit=10, since=200)
    assert [a['pub_date'] for a in since] == [300, 200]

    before = await store.execute('query_articles', limit=10, before=200)
    assert [a['pub_date'] for a in before] == [100]
    assert before[0]['categories'] == ['tech', 'ai']


@pytest.mark.asyncio
async def test_equal_pub_dates_order_by_id_desc(store, make_source, make_article):
    await store.execute('upsert_sources', sources=[make_source('example')])
    await store.execute('upsert_articles', articles=[
        make_article(f'https://example.com/{i}', pub_date=500) for i in range(3)
    ])

    page = await store.execute('query_articles', limit=10)
    ids = [a['id'] for a in page]
    assert ids == sorted(ids, reverse=True)


@pytest.mark.asyncio
async def test_get_article_pub_date(store, make_source, make_article):
    await store.execute('upsert_sources', sources=[make_source('example')])
    await store.execute('upsert_articles', articles=[make_article('https://example.com/a', pub_date=777)])
    article_id = (await store.execute('query_articles', limit=1))[0]['id']

    assert await store.execute('get_article_pub_date', article_id=article_id) == 777
    assert await store.execute('get_article_pub_date', article_id=str(article_id)) == 777
    assert await store.execute('get_article_pub_date', article_id=999999) is None
    assert await store.execute('get_article_pub_date', article_id='not-a-number') is None
    assert await store.execute('get_article_pub_date', article_id=2 ** 63) is None


@pytest.mark.asyncio
async def test_failures_surface_as_store_error(store, make_article):
    with pytest.raises(StoreError) as excinfo:
        await store.execute('no_such_operation')
    assert excinfo.value.operation == 'no_such_operation'

    with pytest.raises(StoreError):
        await store.execute('_worker')

    # Missing required field
    with pytest.raises(StoreError):
        await store.execute('upsert_articles', articles=[{'link': 'https://example.com/x'}])


@pytest.mark.asyncio
async def test_failed_batch_is_rolled_back(store, make_source, make_article):
    await store.execute('upsert_sources', sources=[make_source('example')])
    bad = make_article('https://example.com/bad')
    bad['title'] = None  # NOT NULL violation

    with pytest.raises(StoreError):
        await store.execute('upsert_articles', articles=[make_article('https://example.com/good'), bad])

    assert await store.execute('count_articles') == 0


@pytest.mark.asyncio
async def test_duplicate_in_failed_batch_does_not_mask_rollback(store, make_source, make_article):
    await store.execute('upsert_sources', sources=[make_source('example')])
    await store.execute('upsert_articles', articles=[make_article('https://example.com/kept')])
    bad = make_article('https://example.com/bad')
    bad['source_id'] = None  # NOT NULL violation

    with pytest.raises(StoreError):
        await store.execute('upsert_articles', articles=[
            make_article('https://example.com/kept'),
            make_article('https://example.com/new'),
            bad,
        ])

    links = [a['link'] for a in await store.execute('query_articles', limit=10)]
    assert links == ['https://example.com/kept']


@pytest.mark.asyncio
async def test_execute_after_stop_raises(tmp_path):
    db = DatabaseQueue(str(tmp_path / "stopped.db"))
    await db.start()
    await db.stop()

    with pytest.raises(StoreError):
        await db.execute('count_articles')


@pytest.mark.asyncio
async def test_schema_survives_restart(tmp_path, make_source):
    path = str(tmp_path / "persist.db")
    db = DatabaseQueue(path)
    await db.start()
    await db.execute('upsert_sources', sources=[make_source('example')])
    await db.stop()

    db = DatabaseQueue(path)
    await db.start()
    try:
        assert await db.execute('count_sources') == 1
    finally:
        await db.stop()
