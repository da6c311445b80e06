from locker.modules.clock import as_utc

def money(value) -> str:
    return f'{value or 0:.8f}'

def timestamp(value):
    value = as_utc(value)
    return value.isoformat() if value else None

def link_dict(link):
    return {
        'id': link.id,
        'owner_id': link.owner_id,
        'short_code': link.short_code,
        'title': link.title,
        'description': link.description,
        'destination_url': link.destination_url,
        'rules': link.rules or [],
        'monetizable': link.monetizable,
        'monetization_status': link.monetization_status,
        'clicks': link.clicks,
        'generated_earnings': money(link.generated_earnings),
        'is_deleted': link.is_deleted,
        'created_at': timestamp(link.created_at)
    }

def payout_dict(payout):
    return {
        'id': payout.id,
        'user_id': payout.user_id,
        'amount': f'{payout.amount:.2f}',
        'method': payout.method,
        'details': payout.details,
        'status': payout.status,
        'requested_at': timestamp(payout.requested_at),
        'processed_at': timestamp(payout.processed_at)
    }

def sponsor_dict(sponsor):
    return {
        'id': sponsor.id,
        'link_id': sponsor.link_id,
        'title': sponsor.title,
        'sponsor_url': sponsor.sponsor_url,
        'is_active': sponsor.is_active,
        'created_at': timestamp(sponsor.created_at),
        'expires_at': timestamp(sponsor.expires_at),
        'views': sponsor.views,
        'clicks': sponsor.clicks
    }

def notification_dict(notification):
    return {
        'id': notification.id,
        'type': notification.type,
        'message': notification.message,
        'link_id': notification.link_id,
        'is_read': notification.is_read,
        'created_at': timestamp(notification.created_at)
    }

def cpm_period_dict(period):
    return {
        'id': period.id,
        'rate': f'{period.rate:.4f}',
        'started_at': timestamp(period.started_at),
        'ended_at': timestamp(period.ended_at),
        'active': period.ended_at is None
    }

def profile_dict(profile):
    return {
        'id': profile.id,
        'email': profile.email,
        'display_name': profile.display_name,
        'role': profile.role,
        'account_status': profile.account_status,
        'custom_cpm': f'{profile.custom_cpm:.4f}' if profile.custom_cpm is not None else None,
        'paid_earnings': money(profile.paid_earnings)
    }
