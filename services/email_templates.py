from __future__ import annotations

from datetime import datetime, tzinfo
from html import escape

_STYLE = """
      body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
      .container { max-width: 600px; margin: 0 auto; padding: 20px; }
      .header { background-color: #E4893D; color: white; padding: 20px; text-align: center; }
      .content { padding: 20px; background-color: #f9f9f9; }
      .button { display: inline-block; padding: 12px 24px; background-color: #E4893D; color: white; text-decoration: none; border-radius: 4px; }
      .footer { padding: 20px; text-align: center; font-size: 12px; color: #666; }
"""


def _wrap(inner: str) -> str:
    return f"""<!DOCTYPE html>
<html>
  <head><style>{_STYLE}</style></head>
  <body>
    <div class="container">
      <div class="header"><h1>Hiring Team</h1></div>
      <div class="content">{inner}</div>
      <div class="footer"><p>This is an automated message.</p></div>
    </div>
  </body>
</html>
"""


def format_local(dt: datetime, tz: tzinfo) -> str:
    local = dt.astimezone(tz)
    return local.strftime("%A, %B %d, %Y at %I:%M %p %Z").replace(" 0", " ")


def reach_out_email(*, first_name: str, scheduling_url: str) -> tuple[str, str]:
    subject = "We'd love to talk - pick an interview time"
    inner = f"""
        <p>Hello {escape(first_name or 'there')},</p>
        <p>Thank you for your interest in joining our team. We would like to meet you for a short interview.</p>
        <p>Please choose a time that works for you:</p>
        <p><a class="button" href="{escape(scheduling_url, quote=True)}">Schedule my interview</a></p>
        <p>This link is personal. If you receive a newer invitation, only the newest link will work.</p>
        <p>Best regards,<br>The Hiring Team</p>
    """
    return subject, _wrap(inner)


def interview_invite_email(
    *,
    first_name: str,
    scheduled_at: datetime,
    duration_minutes: int,
    interviewer_name: str,
    meeting_url: str,
    tz: tzinfo,
) -> tuple[str, str]:
    subject = "Interview Confirmed"
    meeting = f'<p><a class="button" href="{escape(meeting_url, quote=True)}">Join Meeting</a></p>' if meeting_url else ""
    inner = f"""
        <p>Hello {escape(first_name or 'there')},</p>
        <p>Your interview is booked.</p>
        <ul>
          <li><strong>Date &amp; Time:</strong> {escape(format_local(scheduled_at, tz))}</li>
          <li><strong>Duration:</strong> {int(duration_minutes)} minutes</li>
          <li><strong>Interviewer:</strong> {escape(interviewer_name or '')}</li>
        </ul>
        {meeting}
        <p>If you need to reschedule, please contact us as soon as possible.</p>
        <p>Best regards,<br>The Hiring Team</p>
    """
    return subject, _wrap(inner)


def admin_booking_notice_email(
    *,
    candidate_name: str,
    scheduled_at: datetime,
    duration_minutes: int,
    meeting_url: str,
    tz: tzinfo,
) -> tuple[str, str]:
    subject = f"New Interview Scheduled: {candidate_name}"
    inner = f"""
        <h2>New Interview Scheduled</h2>
        <p><strong>Candidate:</strong> {escape(candidate_name)}</p>
        <p><strong>Date &amp; Time:</strong> {escape(format_local(scheduled_at, tz))}</p>
        <p><strong>Duration:</strong> {int(duration_minutes)} minutes</p>
        <p><strong>Meeting URL:</strong> {escape(meeting_url or '-')}</p>
        <p>The candidate booked this slot from their scheduling link.</p>
    """
    return subject, _wrap(inner)


def interview_reminder_email(
    *,
    first_name: str,
    candidate_name: str,
    scheduled_at: datetime,
    duration_minutes: int,
    interviewer_name: str,
    meeting_url: str,
    tz: tzinfo,
    for_admin: bool,
) -> tuple[str, str]:
    when = escape(format_local(scheduled_at, tz))
    if for_admin:
        subject = f"Reminder: Interview with {candidate_name} starts soon"
        greeting = f"<p>Your interview with <strong>{escape(candidate_name)}</strong> starts soon.</p>"
    else:
        subject = "Reminder: Your interview starts soon"
        greeting = f"<p>Hello {escape(first_name or 'there')},</p><p>This is a reminder that your interview starts soon.</p>"
    meeting = f'<p><a class="button" href="{escape(meeting_url, quote=True)}">Join Meeting</a></p>' if meeting_url else ""
    inner = f"""
        {greeting}
        <ul>
          <li><strong>Date &amp; Time:</strong> {when}</li>
          <li><strong>Duration:</strong> {int(duration_minutes)} minutes</li>
          <li><strong>Interviewer:</strong> {escape(interviewer_name or '')}</li>
        </ul>
        {meeting}
    """
    return subject, _wrap(inner)


def offer_email(*, first_name: str, email: str, portal_url: str) -> tuple[str, str]:
    subject = "Welcome aboard - You're Hired!"
    inner = f"""
        <h2>Congratulations!</h2>
        <p>Hello {escape(first_name or 'there')},</p>
        <p>We are thrilled to offer you a position on our team. We were impressed with your interview and believe you will be a valuable addition.</p>
        <p>You can now log in to the portal to complete your onboarding. This includes:</p>
        <ul>
          <li>HIPAA compliance documentation</li>
          <li>The prerequisite training course</li>
          <li>Your digital signature confirmation</li>
        </ul>
        <p><a class="button" href="{escape(portal_url, quote=True)}">Start onboarding</a></p>
        <p>Sign in with <strong>{escape(email or '')}</strong>. You will receive a verification code by email.</p>
        <p>Best regards,<br>The Hiring Team</p>
    """
    return subject, _wrap(inner)


def rejection_email(*, first_name: str) -> tuple[str, str]:
    subject = "Update on Your Application"
    inner = f"""
        <p>Hello {escape(first_name or 'there')},</p>
        <p>Thank you for taking the time to interview with us. We appreciate your interest in joining our team.</p>
        <p>After careful consideration, we have decided to move forward with other candidates at this time. We wish you the best in your career search.</p>
        <p>Best regards,<br>The Hiring Team</p>
    """
    return subject, _wrap(inner)
