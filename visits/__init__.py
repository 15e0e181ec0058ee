"""Patient visit queue for the clinic backend.

Check-in, calling, consultation and completion of walk-in and booked
visits, with the staff-facing JSON API and the waiting-room broadcast.
"""
