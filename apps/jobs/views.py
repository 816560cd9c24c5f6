from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status
from rest_framework.parsers import JSONParser, FormParser, MultiPartParser
from drf_yasg.utils import swagger_auto_schema
from drf_yasg import openapi
from core.exceptions import ValidationError
from core.utils import IsActor
from . import feeds
from .coordinator import accept_bid
from .home import build_home_view
from .lifecycle import create_job, delete_job, submit_bid, reject_bid, submit_completion, mark_paid
from .serializers import PositionSerializer, JobCreateSerializer, BidCreateSerializer
from .store import get_record_store
from .utils import pending_upload, request_payload
import logging

logger = logging.getLogger(__name__)

JOB_SCHEMA = openapi.Schema(
    type=openapi.TYPE_OBJECT,
    properties={
        'id': openapi.Schema(type=openapi.TYPE_STRING),
        'userUid': openapi.Schema(type=openapi.TYPE_STRING),
        'imageUrl': openapi.Schema(type=openapi.TYPE_STRING),
        'description': openapi.Schema(type=openapi.TYPE_STRING),
        'details': openapi.Schema(type=openapi.TYPE_STRING),
        'category': openapi.Schema(type=openapi.TYPE_STRING),
        'bidRange': openapi.Schema(type=openapi.TYPE_OBJECT, properties={
            'min': openapi.Schema(type=openapi.TYPE_NUMBER),
            'max': openapi.Schema(type=openapi.TYPE_NUMBER),
        }),
        'location': openapi.Schema(type=openapi.TYPE_OBJECT),
        'radiusKm': openapi.Schema(type=openapi.TYPE_INTEGER),
        'status': openapi.Schema(type=openapi.TYPE_STRING, enum=['open', 'assigned', 'completed', 'paid']),
        'createdAt': openapi.Schema(type=openapi.TYPE_STRING, format='date-time'),
        'createdAtMillis': openapi.Schema(type=openapi.TYPE_INTEGER),
        'expiresAt': openapi.Schema(type=openapi.TYPE_STRING, format='date-time'),
        'selectedBidId': openapi.Schema(type=openapi.TYPE_STRING),
        'assignedBidderUid': openapi.Schema(type=openapi.TYPE_STRING),
        'assignedAt': openapi.Schema(type=openapi.TYPE_STRING, format='date-time'),
        'completionImageUrl': openapi.Schema(type=openapi.TYPE_STRING),
        'completedAt': openapi.Schema(type=openapi.TYPE_STRING, format='date-time'),
        'completedBy': openapi.Schema(type=openapi.TYPE_STRING),
        'paidAt': openapi.Schema(type=openapi.TYPE_STRING, format='date-time'),
    }
)

BID_SCHEMA = openapi.Schema(
    type=openapi.TYPE_OBJECT,
    properties={
        'id': openapi.Schema(type=openapi.TYPE_STRING),
        'jobId': openapi.Schema(type=openapi.TYPE_STRING),
        'bidderUid': openapi.Schema(type=openapi.TYPE_STRING),
        'amount': openapi.Schema(type=openapi.TYPE_NUMBER),
        'message': openapi.Schema(type=openapi.TYPE_STRING),
        'status': openapi.Schema(type=openapi.TYPE_STRING, enum=['pending', 'accepted', 'rejected']),
        'createdAt': openapi.Schema(type=openapi.TYPE_STRING, format='date-time'),
        'createdAtMillis': openapi.Schema(type=openapi.TYPE_INTEGER),
    }
)

POSITION_PARAMS = [
    openapi.Parameter('lat', openapi.IN_QUERY, type=openapi.TYPE_NUMBER, description="Viewer latitude"),
    openapi.Parameter('lng', openapi.IN_QUERY, type=openapi.TYPE_NUMBER, description="Viewer longitude"),
]

ERROR_RESPONSES = {
    400: 'Bad Request',
    401: 'Unauthorized',
    403: 'Forbidden',
    404: 'Not Found',
}


def viewer_position(request):
    serializer = PositionSerializer(data=request.query_params)
    if not serializer.is_valid():
        raise ValidationError(serializer.errors)
    return serializer.validated_data['position']


class JobCreateView(APIView):
    permission_classes = [IsActor]
    parser_classes = [JSONParser, MultiPartParser, FormParser]

    @swagger_auto_schema(
        operation_description="Post a job. Send `imageUrl`, or upload `image` as multipart "
                              "(then `bidRange` and `location` are JSON strings).",
        request_body=JobCreateSerializer,
        responses={201: JOB_SCHEMA, **ERROR_RESPONSES, 502: 'Image host error'}
    )
    def post(self, request):
        data = request_payload(request, 'image', json_fields=('bidRange', 'location'))
        job = create_job(get_record_store(), request.user.uid, data, upload=pending_upload(request, 'image', 'job'))
        return Response(job, status=status.HTTP_201_CREATED)


class MyJobsView(APIView):
    permission_classes = [IsActor]

    @swagger_auto_schema(
        operation_description="Jobs posted by the caller, newest first.",
        responses={200: openapi.Schema(type=openapi.TYPE_ARRAY, items=JOB_SCHEMA), 401: 'Unauthorized'}
    )
    def get(self, request):
        return Response(feeds.my_jobs(get_record_store(), request.user.uid))


class NearbyJobsView(APIView):
    permission_classes = [IsActor]

    @swagger_auto_schema(
        operation_description="Open, unexpired jobs of other posters whose radius covers the caller, "
                              "nearest first, each with `distanceKm`. Empty without a position.",
        manual_parameters=POSITION_PARAMS,
        responses={200: openapi.Schema(type=openapi.TYPE_ARRAY, items=JOB_SCHEMA), 400: 'Bad Request', 401: 'Unauthorized'}
    )
    def get(self, request):
        position = viewer_position(request)
        return Response(feeds.nearby_jobs(get_record_store(), request.user.uid, position))


class JobDetailView(APIView):
    permission_classes = [IsActor]

    @swagger_auto_schema(
        operation_description="A job with every bid (poster) or the caller's own bid (anyone else).",
        responses={
            200: openapi.Schema(type=openapi.TYPE_OBJECT, properties={
                'job': JOB_SCHEMA,
                'bids': openapi.Schema(type=openapi.TYPE_ARRAY, items=BID_SCHEMA),
                'myBid': BID_SCHEMA,
            }),
            401: 'Unauthorized',
            404: 'Not Found'
        }
    )
    def get(self, request, job_id):
        return Response(feeds.job_detail(get_record_store(), request.user.uid, job_id))


class JobDeleteView(APIView):
    permission_classes = [IsActor]

    @swagger_auto_schema(
        operation_description="Delete an open job and its bids. Poster only.",
        responses={204: 'No Content', **ERROR_RESPONSES, 412: 'Job is not open'}
    )
    def delete(self, request, job_id):
        delete_job(get_record_store(), request.user.uid, job_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class JobBidsView(APIView):
    permission_classes = [IsActor]

    @swagger_auto_schema(
        operation_description="All bids on the job, oldest first. Poster only.",
        responses={200: openapi.Schema(type=openapi.TYPE_ARRAY, items=BID_SCHEMA), **ERROR_RESPONSES}
    )
    def get(self, request, job_id):
        return Response(feeds.job_bids(get_record_store(), request.user.uid, job_id))

    @swagger_auto_schema(
        operation_description="Place a bid on an open job of another poster. One bid per bidder per job.",
        request_body=BidCreateSerializer,
        responses={201: BID_SCHEMA, **ERROR_RESPONSES}
    )
    def post(self, request, job_id):
        bid = submit_bid(get_record_store(), request.user.uid, job_id, request.data)
        return Response(bid, status=status.HTTP_201_CREATED)


class BidAcceptView(APIView):
    permission_classes = [IsActor]

    @swagger_auto_schema(
        operation_description="Accept one bid: the bid becomes accepted, every other bid rejected "
                              "and the job assigned to the bidder, all at once. Poster only.",
        request_body=openapi.Schema(type=openapi.TYPE_OBJECT, properties={}),
        responses={200: JOB_SCHEMA, **ERROR_RESPONSES, 409: 'Job no longer available', 412: 'Bid is not pending'}
    )
    def post(self, request, job_id, bid_id):
        job = accept_bid(get_record_store(), request.user.uid, job_id, bid_id)
        return Response(job)


class BidRejectView(APIView):
    permission_classes = [IsActor]

    @swagger_auto_schema(
        operation_description="Reject one pending bid. Rejecting a rejected bid is a no-op. Poster only.",
        request_body=openapi.Schema(type=openapi.TYPE_OBJECT, properties={}),
        responses={200: BID_SCHEMA, **ERROR_RESPONSES, 412: 'Bid was accepted'}
    )
    def post(self, request, job_id, bid_id):
        bid = reject_bid(get_record_store(), request.user.uid, job_id, bid_id)
        return Response(bid)


class JobCompletionView(APIView):
    permission_classes = [IsActor]
    parser_classes = [JSONParser, MultiPartParser, FormParser]

    @swagger_auto_schema(
        operation_description="Submit proof of work as the assigned bidder. Send `completionImageUrl` "
                              "or upload `image` as multipart.",
        request_body=openapi.Schema(
            type=openapi.TYPE_OBJECT,
            properties={
                'completionImageUrl': openapi.Schema(type=openapi.TYPE_STRING),
                'image': openapi.Schema(type=openapi.TYPE_STRING, format=openapi.FORMAT_BINARY,
                                        description="Multipart upload instead of completionImageUrl"),
            },
        ),
        responses={200: JOB_SCHEMA, **ERROR_RESPONSES, 412: 'Job is not assigned', 502: 'Image host error'}
    )
    def post(self, request, job_id):
        data = request_payload(request, 'image')
        job = submit_completion(
            get_record_store(), request.user.uid, job_id, data, upload=pending_upload(request, 'image', 'completion'),
        )
        return Response(job)


class PaymentConfirmView(APIView):
    permission_classes = [IsActor]

    @swagger_auto_schema(
        operation_description="Attest that the completed job was paid. Poster only; no money moves.",
        request_body=openapi.Schema(type=openapi.TYPE_OBJECT, properties={}),
        responses={200: JOB_SCHEMA, **ERROR_RESPONSES, 412: 'Job is not completed'}
    )
    def post(self, request, job_id):
        job = mark_paid(get_record_store(), request.user.uid, job_id)
        return Response(job)


class MyBidsView(APIView):
    permission_classes = [IsActor]

    @swagger_auto_schema(
        operation_description="Every bid the caller placed, newest first, with its job.",
        responses={
            200: openapi.Schema(type=openapi.TYPE_ARRAY, items=openapi.Schema(
                type=openapi.TYPE_OBJECT, properties={'bid': BID_SCHEMA, 'job': JOB_SCHEMA}
            )),
            401: 'Unauthorized'
        }
    )
    def get(self, request):
        return Response(feeds.my_bids(get_record_store(), request.user.uid))


class HomeScreenView(APIView):
    permission_classes = [IsActor]

    @swagger_auto_schema(
        operation_description="Bidder and poster banners, or the discovery feed when there is neither.",
        manual_parameters=POSITION_PARAMS,
        responses={
            200: openapi.Schema(type=openapi.TYPE_OBJECT, properties={
                'bidderBanner': openapi.Schema(type=openapi.TYPE_OBJECT, properties={'job': JOB_SCHEMA, 'bid': BID_SCHEMA}),
                'posterBanner': openapi.Schema(type=openapi.TYPE_OBJECT, properties={'job': JOB_SCHEMA, 'bid': BID_SCHEMA}),
                'feed': openapi.Schema(type=openapi.TYPE_ARRAY, items=JOB_SCHEMA),
                'assignedJobs': openapi.Schema(type=openapi.TYPE_ARRAY, items=JOB_SCHEMA),
                'showFeed': openapi.Schema(type=openapi.TYPE_BOOLEAN),
                'hasPostedJobs': openapi.Schema(type=openapi.TYPE_BOOLEAN),
            }),
            400: 'Bad Request',
            401: 'Unauthorized'
        }
    )
    def get(self, request):
        store = get_record_store()
        position = viewer_position(request)
        data = build_home_view(store, request.user.uid, position)
        data['hasPostedJobs'] = feeds.has_posted_jobs(store, request.user.uid)
        return Response(data)


class WorkHistoryView(APIView):
    permission_classes = [IsActor]

    @swagger_auto_schema(
        operation_description="Completed and paid jobs a user worked on, most recently finished first.",
        responses={200: openapi.Schema(type=openapi.TYPE_ARRAY, items=JOB_SCHEMA), 401: 'Unauthorized'}
    )
    def get(self, request, uid):
        return Response(feeds.work_history(get_record_store(), uid))
