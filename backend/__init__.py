"""
Playcoach backend package.

Design intent:
- Turn a recorded caregiver-child play session into a coded, profiled report.
- Keep each pipeline stage (transcript/coding/profile/milestones) independent
  and orchestrated only by the pipeline supervisor.
"""
