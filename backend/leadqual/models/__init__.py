# backend/leadqual/models/__init__.py
from leadqual.models.lead import Lead, LeadStatus, lead_to_dict

__all__ = ['Lead', 'LeadStatus', 'lead_to_dict']
