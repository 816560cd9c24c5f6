import pytest

from apps.jobs.store import job_path
from conftest import BIDDER_A, BIDDER_B, POSTER, job_payload


@pytest.fixture
def poster(client_for):
    return client_for(POSTER)


@pytest.fixture
def bidder_a(client_for):
    return client_for(BIDDER_A)


@pytest.fixture
def bidder_b(client_for):
    return client_for(BIDDER_B)


def post_job(client, **overrides):
    response = client.post('/jobs/create/', job_payload(**overrides), format='json')
    assert response.status_code == 201, response.data
    return response.data


def near_params():
    return {'lat': 12.95, 'lng': 77.50}


def test_requests_without_actor_are_refused(api_store, client_for):
    response = client_for().get('/jobs/mine/')
    assert response.status_code == 401
    assert response.data['code'] == 'not_authenticated'


def test_invalid_job_is_rejected_with_field_errors(api_store, poster):
    response = poster.post('/jobs/create/', job_payload(bidRange={'min': 500, 'max': 100}), format='json')
    assert response.status_code == 400
    assert response.data['code'] == 'invalid'
    assert 'bidRange' in response.data['error']


def test_marketplace_flow(api_store, poster, bidder_a, bidder_b):
    job = post_job(poster)
    assert job['status'] == 'open'

    nearby = bidder_a.get('/jobs/nearby/', near_params())
    assert nearby.status_code == 200
    assert [j['id'] for j in nearby.data] == [job['id']]
    assert bidder_a.get('/jobs/nearby/', {'lat': 13.10, 'lng': 77.50}).data == []

    bid_a = bidder_a.post(f"/jobs/{job['id']}/bids/", {'amount': 200, 'message': 'Can do'}, format='json')
    assert bid_a.status_code == 201
    bid_b = bidder_b.post(f"/jobs/{job['id']}/bids/", {'amount': 180}, format='json')
    assert bid_b.status_code == 201

    listed = poster.get(f"/jobs/{job['id']}/bids/")
    assert [b['id'] for b in listed.data] == [bid_a.data['id'], bid_b.data['id']]

    accepted = poster.post(f"/jobs/{job['id']}/bids/{bid_a.data['id']}/accept/")
    assert accepted.status_code == 200
    assert accepted.data['assignedBidderUid'] == BIDDER_A

    again = poster.post(f"/jobs/{job['id']}/bids/{bid_b.data['id']}/accept/")
    assert again.status_code == 409
    assert again.data == {'error': 'This job is no longer available.', 'code': 'conflict'}

    home = bidder_a.get('/home/', near_params())
    assert home.data['bidderBanner']['job']['id'] == job['id']
    assert home.data['bidderBanner']['bid']['status'] == 'accepted'
    assert home.data['hasPostedJobs'] is False
    assert poster.get('/home/').data['posterBanner']['job']['id'] == job['id']

    early_payment = poster.post(f"/jobs/{job['id']}/payment-confirm/")
    assert early_payment.status_code == 412
    assert early_payment.data['code'] == 'precondition_failed'

    completion = bidder_a.post(
        f"/jobs/{job['id']}/completion/", {'completionImageUrl': 'https://img/done.jpg'}, format='json',
    )
    assert completion.status_code == 200
    assert completion.data['status'] == 'completed'

    paid = poster.post(f"/jobs/{job['id']}/payment-confirm/")
    assert paid.status_code == 200
    assert paid.data['status'] == 'paid'

    history = bidder_b.get(f'/users/{BIDDER_A}/history/')
    assert [j['id'] for j in history.data] == [job['id']]
    assert bidder_a.get('/home/', near_params()).data['bidderBanner'] is None


def test_self_bid_is_forbidden(api_store, poster):
    job = post_job(poster)
    response = poster.post(f"/jobs/{job['id']}/bids/", {'amount': 200}, format='json')
    assert response.status_code == 403
    assert response.data == {'error': 'You cannot bid on your own job.', 'code': 'forbidden'}


def test_duplicate_bid_is_invalid(api_store, poster, bidder_a):
    job = post_job(poster)
    bidder_a.post(f"/jobs/{job['id']}/bids/", {'amount': 200}, format='json')
    response = bidder_a.post(f"/jobs/{job['id']}/bids/", {'amount': 250}, format='json')
    assert response.status_code == 400
    assert response.data['error'] == 'You have already placed a bid on this job.'


def test_bid_list_is_for_the_poster(api_store, poster, bidder_a):
    job = post_job(poster)
    assert bidder_a.get(f"/jobs/{job['id']}/bids/").status_code == 403


def test_job_detail_and_my_bids(api_store, poster, bidder_a):
    job = post_job(poster)
    bid = bidder_a.post(f"/jobs/{job['id']}/bids/", {'amount': 200}, format='json').data

    detail = bidder_a.get(f"/jobs/{job['id']}/details/")
    assert detail.data['myBid']['id'] == bid['id']
    assert len(poster.get(f"/jobs/{job['id']}/details/").data['bids']) == 1
    assert poster.get('/jobs/unknown/details/').status_code == 404

    mine = bidder_a.get('/bids/mine/')
    assert mine.data[0]['bid']['id'] == bid['id']
    assert mine.data[0]['job']['id'] == job['id']


def test_reject_is_idempotent(api_store, poster, bidder_a):
    job = post_job(poster)
    bid = bidder_a.post(f"/jobs/{job['id']}/bids/", {'amount': 200}, format='json').data
    first = poster.post(f"/jobs/{job['id']}/bids/{bid['id']}/reject/")
    second = poster.post(f"/jobs/{job['id']}/bids/{bid['id']}/reject/")
    assert first.status_code == second.status_code == 200
    assert second.data['status'] == 'rejected'


def test_delete_only_while_open(api_store, poster, bidder_a):
    job = post_job(poster)
    assert bidder_a.delete(f"/jobs/{job['id']}/delete/").status_code == 403
    assert poster.delete(f"/jobs/{job['id']}/delete/").status_code == 204
    assert api_store.get(job_path(job['id'])) is None

    job = post_job(poster)
    bid = bidder_a.post(f"/jobs/{job['id']}/bids/", {'amount': 200}, format='json').data
    poster.post(f"/jobs/{job['id']}/bids/{bid['id']}/accept/")
    assert poster.delete(f"/jobs/{job['id']}/delete/").status_code == 412


def test_my_jobs(api_store, poster):
    job = post_job(poster)
    response = poster.get('/jobs/mine/')
    assert [j['id'] for j in response.data] == [job['id']]
    assert poster.get('/home/').data['hasPostedJobs'] is True


def test_position_needs_both_coordinates(api_store, bidder_a):
    response = bidder_a.get('/jobs/nearby/', {'lat': 12.95})
    assert response.status_code == 400
    assert response.data['code'] == 'invalid'


@pytest.mark.django_db
def test_orm_backed_flow(settings, poster, bidder_a):
    from apps.jobs.store import reset_record_store
    settings.GEOFEED_RECORD_STORE = 'orm'
    reset_record_store()
    try:
        job = post_job(poster)
        bid = bidder_a.post(f"/jobs/{job['id']}/bids/", {'amount': 200}, format='json')
        assert bid.status_code == 201
        accepted = poster.post(f"/jobs/{job['id']}/bids/{bid.data['id']}/accept/")
        assert accepted.status_code == 200
        assert accepted.data['selectedBidId'] == bid.data['id']
    finally:
        reset_record_store()
