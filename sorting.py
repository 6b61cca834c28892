import dataclasses
import datetime
from typing import Any, Callable

from util import abbreviate, short_delta

ORDERS = {
    'asc': 'Ascending',
    'desc': 'Descending',
}


@dataclasses.dataclass(frozen=True)
class SortField:
    label: str
    accessor: Callable[[Any], Any]
    kind: str = 'number'

    def format(self, row, now=None):
        value = self.accessor(row)
        if self.kind == 'date':
            return short_delta(value, now)
        value = abbreviate(round(value or 0))
        if self.kind == 'money':
            return f'${value}'
        return value


MEMBER_SORT_FIELDS = {
    'contribution_total': SortField('Total Contribution', lambda m: m.contribution['total'], 'money'),
    'contribution_daily': SortField('Contribution today', lambda m: m.contribution['daily'], 'money'),
    'this_week': SortField('Contribution this week', lambda m: m.this_week, 'money'),
    'share_value': SortField('Share Value', lambda m: m.share_value, 'money'),
    'joined': SortField('Joining date', lambda m: m.joined, 'date'),
    'online': SortField('Last online', lambda m: m.online, 'date'),
    'days_offline': SortField('Days offline', lambda m: m.days_offline),
    'flights': SortField('Flights', lambda m: m.flights),
    'average_flight': SortField('Avg. contribution/flight', lambda m: m.contribution['average']['flight'], 'money'),
    'average_day': SortField('Avg. contribution/day', lambda m: m.contribution['average']['day'], 'money'),
    'average_week': SortField('Avg. contribution/week', lambda m: m.contribution['average']['week'], 'money'),
}


@dataclasses.dataclass(frozen=True)
class SortState:
    field: str
    order: str = 'desc'
    amount: int = None

    def __post_init__(self):
        # unknown keys must fail loudly at construction time
        MEMBER_SORT_FIELDS[self.field]
        if self.order not in ORDERS:
            raise KeyError(self.order)

    @property
    def sort_field(self):
        return MEMBER_SORT_FIELDS[self.field]

    def apply(self, rows):
        accessor = self.sort_field.accessor

        def key(row):
            value = accessor(row)
            if isinstance(value, datetime.datetime):
                return value.timestamp()
            return value or 0

        ordered = sorted(rows, key=key, reverse=self.order == 'desc')
        if self.amount:
            ordered = ordered[:self.amount]
        return ordered

    def format_rows(self, rows, now=None):
        field = self.sort_field
        return [f'**{i}.** {row.name} (*{field.format(row, now)}*)' for i, row in enumerate(self.apply(rows), start=1)]
