# core/constants.py
JOB_STATUS_CHOICES = (
    ('open', 'Open'),              # Posted and accepting bids
    ('assigned', 'Assigned'),      # A bid was accepted, work in progress
    ('completed', 'Completed'),    # Assigned bidder submitted a completion image
    ('paid', 'Paid'),              # Poster attested payment
)

BID_STATUS_CHOICES = (
    ('pending', 'Pending'),      # Bid placed, awaiting poster response
    ('accepted', 'Accepted'),    # Poster accepted this bid
    ('rejected', 'Rejected'),    # Poster rejected it, or another bid won
)

CATEGORY_CHOICES = (
    ('other', 'Other'),
    ('delivery', 'Delivery'),
    ('cleaning', 'Cleaning'),
    ('repairs', 'Repairs'),
    ('tutoring', 'Tutoring'),
)

LOCATION_TYPE_CHOICES = (
    ('current', 'Current position'),   # Coordinates captured at posting time
    ('custom', 'Custom address'),      # Free text, never filtered geospatially
)

# Statuses in which a job carries selectedBidId / assignedBidderUid
ASSIGNED_STATUSES = ('assigned', 'completed', 'paid')

EARTH_RADIUS_KM = 6371.0

MIN_RADIUS_KM = 1
MAX_RADIUS_KM = 100

JOBS_COLLECTION = 'jobs'
BIDS_COLLECTION = 'bids'
