from django.urls import path
from .views import (
    JobCreateView, MyJobsView, NearbyJobsView, JobDetailView, JobDeleteView,
    JobBidsView, BidAcceptView, BidRejectView, JobCompletionView,
    PaymentConfirmView, MyBidsView, HomeScreenView, WorkHistoryView
)

urlpatterns = [
    path('jobs/create/', JobCreateView.as_view(), name='job_create'),
    path('jobs/mine/', MyJobsView.as_view(), name='my_jobs'),
    path('jobs/nearby/', NearbyJobsView.as_view(), name='nearby_jobs'),
    path('jobs/<str:job_id>/details/', JobDetailView.as_view(), name='job_details'),
    path('jobs/<str:job_id>/delete/', JobDeleteView.as_view(), name='job_delete'),
    path('jobs/<str:job_id>/bids/', JobBidsView.as_view(), name='job_bids'),
    path('jobs/<str:job_id>/bids/<str:bid_id>/accept/', BidAcceptView.as_view(), name='bid_accept'),
    path('jobs/<str:job_id>/bids/<str:bid_id>/reject/', BidRejectView.as_view(), name='bid_reject'),
    path('jobs/<str:job_id>/completion/', JobCompletionView.as_view(), name='job_completion'),
    path('jobs/<str:job_id>/payment-confirm/', PaymentConfirmView.as_view(), name='payment-confirm'),
    path('bids/mine/', MyBidsView.as_view(), name='my_bids'),
    path('home/', HomeScreenView.as_view(), name='home'),
    path('users/<str:uid>/history/', WorkHistoryView.as_view(), name='work_history'),
]
