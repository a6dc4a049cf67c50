#
# A software floating point value stored as a (mantissa, exponent) pair over a
# configurable base, with configurable storage types and bounds.
#

import copy
import sys
import threading
from abc import ABC, abstractmethod
from collections import namedtuple
from enum import Enum, IntFlag
from fractions import Fraction
from numbers import Integral
from typing import NamedTuple

import attr

__all__ = ('Context', 'DefaultContext', 'get_context', 'set_context', 'local_context',
           'Flags', 'TextFormat', 'DefaultTextFormat',
           'IntegerFormat', 'FloatFormat', 'Float', 'FloatTuple',
           'FloatingPoint', 'NumericLimits', 'FloatLimits', 'numeric_limits',
           'is_floating_point', 'is_arithmetic', 'is_scalar', 'is_object',
           'int8', 'int16', 'int32', 'int64', 'uint8', 'uint16', 'uint32', 'uint64',
           'Base2_8_8', 'Base2_16_16', 'Base2_32_32', 'Base10_32_16')


# Exponent codes of the reserved encodings.  They are only special with a zero mantissa.
ZERO_CODE = 0
INF_CODE = 1
NEGATIVE_INF_CODE = 2
NAN_CODE = 3


# Sticky status flags.  Raising one never changes a result.
class Flags(IntFlag):
    OVERFLOW       = 0x01
    UNDERFLOW      = 0x02
    INEXACT        = 0x04
    EXPONENT_RANGE = 0x08


FloatTuple = namedtuple('FloatTuple', 'mantissa exponent')


@attr.s(slots=True, kw_only=True, eq=False)
class TextFormat:
    '''Controls the output of conversion to strings.  Finite non-zero values are written as
    the mantissa, the base and the exponent, for example 64*2^-6.'''

    # If True, positive values and infinity are given a leading '+'.
    force_leading_sign = attr.ib(default=False)
    # If True, non-negative exponents are given a '+'.
    force_exp_sign = attr.ib(default=False)
    # Separator between the mantissa and the base.
    times = attr.ib(default='*')
    # Separator between the base and the exponent.
    power = attr.ib(default='^')
    zero = attr.ib(default='0')
    inf = attr.ib(default='Infinity')
    nan = attr.ib(default='NaN')

    def leading_sign(self, is_negative):
        '''Return the leading sign string.'''
        return '-' if is_negative else '+' if self.force_leading_sign else ''

    def exponent_str(self, exponent):
        '''Return the formatted exponent.'''
        sign = '-' if exponent < 0 else '+' if self.force_exp_sign else ''
        return f'{sign}{abs(exponent)}'

    def format(self, value):
        '''Return the text of a Float.'''
        if value.is_nan():
            return self.nan
        if value.is_infinite():
            return self.leading_sign(value.is_negative()) + self.inf
        if value.is_zero():
            return self.leading_sign(False) + self.zero
        return (f'{self.leading_sign(value.is_negative())}{abs(value.mantissa)}'
                f'{self.times}{value.fmt.base}{self.power}{self.exponent_str(value.exponent)}')


DefaultTextFormat = TextFormat()


class Context:
    '''The execution context for conversions.  Carries the status flags raised by them.

    Saturation and truncation are never signalled as exceptions; they only set flags here
    so a caller can find out after the fact that a result is not exact.
    '''

    __slots__ = ('flags', )

    def __init__(self, *, flags=0):
        self.flags = Flags(flags)

    def copy(self):
        '''Return a copy of the context.'''
        return copy.copy(self)

    def __repr__(self):
        return f'<Context flags={self.flags!r}>'


class IntegerFormat:
    '''A two's-complement integer storage type, either signed or unsigned.'''

    __slots__ = ('width', 'is_signed', 'min_int', 'max_int')

    def __init__(self, width, is_signed):
        if not isinstance(width, int):
            raise TypeError('width must be an integer')
        if width < 1:
            raise ValueError('width must be at least 1')
        self.width = width
        self.is_signed = bool(is_signed)
        if is_signed:
            self.min_int = -(1 << (width - 1))
            self.max_int = (1 << (width - 1)) - 1
        else:
            self.min_int = 0
            self.max_int = (1 << width) - 1

    def contains(self, value):
        '''Return True if value can be stored without loss.'''
        return self.min_int <= value <= self.max_int

    def narrow(self, value):
        '''Return value cast to this type.  Out-of-range values wrap modulo 2^width, as a C
        cast to a fixed-width integer would.'''
        value &= (1 << self.width) - 1
        if self.is_signed and value > self.max_int:
            value -= 1 << self.width
        return value

    def __eq__(self, other):
        return (isinstance(other, IntegerFormat) and
                (self.width, self.is_signed) == (other.width, other.is_signed))

    def __hash__(self):
        return hash((self.width, self.is_signed))

    def __repr__(self):
        return f'{"" if self.is_signed else "u"}int{self.width}'


def div_trunc(value, divisor):
    '''Divide value by a positive divisor, rounding towards zero.  Return a (quotient,
    remainder) pair where the remainder has the sign of value.'''
    quotient, remainder = divmod(abs(value), divisor)
    if value < 0:
        return -quotient, -remainder
    return quotient, remainder


class FloatFormat(NamedTuple):
    '''A (mantissa, exponent) floating point format.  Only instantiate indirectly through the
    from_ constructors.

    A finite value is mantissa * base^exponent.  The mantissa lies in [mantissa_lowest,
    mantissa_max] and the exponent in [exponent_lowest, exponent_max].  The bounds must be
    storable in mantissa_type and exponent_type respectively.

    There is no implicit leading digit.  Instead normalization grows the mantissa until
    multiplying it by the base once more would take it out of range, so a normalized
    mantissa is never zero.  That frees every pair with a zero mantissa to encode special
    values without taking an exponent out of the normal range:

            (0, 0)  zero
            (0, 1)  +infinity
            (0, 2)  -infinity
            (0, 3)  NaN

    There are no subnormals and only one zero.
    '''

    # These seven attributes determine the rest, which are pre-calculated for efficiency
    mantissa_type: IntegerFormat
    exponent_type: IntegerFormat
    base: int
    mantissa_lowest: int
    mantissa_max: int
    exponent_lowest: int
    exponent_max: int

    # A positive mantissa no greater than grow_max, or a negative one no less than
    # grow_lowest, can be multiplied by the base and stay in range.
    grow_max: int
    grow_lowest: int

    @classmethod
    def from_bounds(cls, mantissa_type, exponent_type, base=2, mantissa_lowest=None,
                    mantissa_max=None, exponent_lowest=None, exponent_max=None):
        '''Make a FloatFormat with pre-calculated values.  All constructors ultimately call this
        one.  Omitted bounds default to the limits of their storage type.'''
        if not isinstance(mantissa_type, IntegerFormat):
            raise TypeError('mantissa_type must be an IntegerFormat')
        if not isinstance(exponent_type, IntegerFormat):
            raise TypeError('exponent_type must be an IntegerFormat')
        if mantissa_lowest is None:
            mantissa_lowest = mantissa_type.min_int
        if mantissa_max is None:
            mantissa_max = mantissa_type.max_int
        if exponent_lowest is None:
            exponent_lowest = exponent_type.min_int
        if exponent_max is None:
            exponent_max = exponent_type.max_int

        bounds = (base, mantissa_lowest, mantissa_max, exponent_lowest, exponent_max)
        if not all(isinstance(arg, int) for arg in bounds):
            raise TypeError('base and bounds must be integers')
        if base < 2:
            raise ValueError('base must be at least 2')
        if not (mantissa_type.contains(mantissa_lowest)
                and mantissa_type.contains(mantissa_max)):
            raise ValueError(f'mantissa bounds do not fit in {mantissa_type!r}')
        if not (exponent_type.contains(exponent_lowest)
                and exponent_type.contains(exponent_max)):
            raise ValueError(f'exponent bounds do not fit in {exponent_type!r}')
        if not (exponent_type.contains(ZERO_CODE) and exponent_type.contains(NAN_CODE)):
            raise ValueError(f'{exponent_type!r} cannot store the special value codes')
        # A mantissa shrunk by the base must never truncate to zero
        if mantissa_max < base - 1 or mantissa_lowest > 1 - base:
            raise ValueError(f'mantissa bounds must include [{1 - base}, {base - 1}]')
        if exponent_lowest > exponent_max:
            raise ValueError('exponent_lowest cannot exceed exponent_max')

        grow_max, _ = div_trunc(mantissa_max, base)
        grow_lowest, _ = div_trunc(mantissa_lowest, base)
        return cls(mantissa_type, exponent_type, base, mantissa_lowest, mantissa_max,
                   exponent_lowest, exponent_max, grow_max, grow_lowest)

    @classmethod
    def from_widths(cls, mantissa_width, exponent_width, base=2):
        '''Construct with signed storage of the given widths, using their full ranges.'''
        return cls.from_bounds(IntegerFormat(mantissa_width, True),
                               IntegerFormat(exponent_width, True), base)

    def __repr__(self):
        return (f'FloatFormat(base={self.base}, '
                f'mantissa=[{self.mantissa_lowest}, {self.mantissa_max}], '
                f'exponent=[{self.exponent_lowest}, {self.exponent_max}])')

    def __call__(self, value, exponent, context=None):
        return self.from_parts(value, exponent, context)

    def _of(self, mantissa, exponent):
        '''Return a Float with the given fields, without normalizing.  Reserved for the
        factory and normalizer: anything else would break canonical form.'''
        return Float(self, mantissa, exponent, _RAW)

    ##
    ## Factory
    ##

    def make_zero(self):
        '''Return zero.'''
        return self._of(0, ZERO_CODE)

    def make_one(self):
        '''Return the nearest representation of one.  This is whatever the conversion of
        (1, 0) yields, which need not be exact or even non-zero for every format.'''
        return self.from_parts(1, 0, Context())

    def make_infinity(self):
        '''Return positive infinity.'''
        return self._of(0, INF_CODE)

    def make_negative_infinity(self):
        '''Return negative infinity.'''
        return self._of(0, NEGATIVE_INF_CODE)

    def make_nan(self):
        '''Return NaN.'''
        return self._of(0, NAN_CODE)

    def make_min(self):
        '''Return the smallest positive normal value.'''
        return self._of(1, self.exponent_lowest)

    def make_lowest(self):
        '''Return the most negative finite value.'''
        return self._of(self.mantissa_lowest, self.exponent_max)

    def make_max(self):
        '''Return the largest finite value.'''
        return self._of(self.mantissa_max, self.exponent_max)

    # The numeric limits capability; see NumericLimits
    def max(self):
        return self.make_max()

    def min(self):
        return self.make_min()

    def lowest(self):
        return self.make_lowest()

    ##
    ## Normalization and conversion
    ##

    def _normalize(self, value, exponent, context):
        '''Return a canonical Float for value * base^exponent, or a special value when that
        cannot be represented.

        exponent must already lie within the format's bounds.  Growing the mantissa is
        exact; shrinking it truncates towards zero and loses the low-order digits.  A
        value that cannot grow because the exponent is at its floor is flushed to zero;
        one that cannot shrink because the exponent is at its ceiling saturates to an
        infinity of its sign.
        '''
        if value == 0:
            return self.make_zero()

        # Work on the magnitude against the bound for the value's sign.  The bounds are
        # not symmetric, so grow and shrink limits are chosen per sign.
        is_negative = value < 0
        if is_negative:
            magnitude, grow_limit, limit = -value, -self.grow_lowest, -self.mantissa_lowest
        else:
            magnitude, grow_limit, limit = value, self.grow_max, self.mantissa_max

        base = self.base
        while magnitude <= grow_limit:
            if exponent == self.exponent_lowest:
                context.flags |= Flags.UNDERFLOW | Flags.INEXACT
                return self.make_zero()
            exponent -= 1
            magnitude *= base

        while magnitude > limit:
            if exponent == self.exponent_max:
                context.flags |= Flags.OVERFLOW | Flags.INEXACT
                if is_negative:
                    return self.make_negative_infinity()
                return self.make_infinity()
            exponent += 1
            magnitude, lost = divmod(magnitude, base)
            if lost:
                context.flags |= Flags.INEXACT

        mantissa = self.mantissa_type.narrow(-magnitude if is_negative else magnitude)
        return self._of(mantissa, exponent)

    def from_parts(self, value, exponent, context=None):
        '''Return the Float for value * base^exponent.  value and exponent are integers of any
        size.

        An exponent above the format's range gives +infinity and one below it -infinity,
        whatever value is.  Otherwise the result is normalized, saturating as described for
        _normalize().  Conditions met are recorded in the context's flags.
        '''
        if not isinstance(value, int):
            raise TypeError('value must be an integer')
        if not isinstance(exponent, int):
            raise TypeError('exponent must be an integer')
        context = context or get_context()

        if exponent > self.exponent_max:
            context.flags |= Flags.EXPONENT_RANGE | Flags.OVERFLOW
            return self.make_infinity()
        if exponent < self.exponent_lowest:
            context.flags |= Flags.EXPONENT_RANGE
            return self.make_negative_infinity()

        # A value strictly inside the mantissa bounds fits the mantissa storage type, and
        # growing it never passes through an out-of-range intermediate.  Anything else is
        # normalized at its own width and only the final mantissa is narrowed.
        if self.mantissa_lowest < value < self.mantissa_max:
            value = self.mantissa_type.narrow(value)
        return self._normalize(value, exponent, context)


# Only FloatFormat._of holds this; it is what lets a Float be constructed.
_RAW = object()


def _not_numeric(self, other):
    return NotImplemented


class Float(namedtuple('Float', 'fmt mantissa exponent')):
    '''Internal Representation
       -----------------------

    A Float is an immutable (fmt, mantissa, exponent) triple.  Finite non-zero values have
    a non-zero mantissa and

            value = mantissa * fmt.base^exponent

    A zero mantissa marks a special value, selected by the exponent code: 0 for zero, 1 for
    +infinity, 2 for -infinity and 3 for NaN.

    Instances are obtained from a FloatFormat, through its from_parts() conversion or its
    make_ factory methods; those are the only producers of canonical values.
    '''

    def __new__(cls, fmt, mantissa, exponent, _token=None):
        '''Validate and create a floating point number with the given format, mantissa and
        exponent.  Only a FloatFormat can do this.
        '''
        if _token is not _RAW:
            raise TypeError('Float values are only made by a FloatFormat')
        if not isinstance(mantissa, int):
            raise TypeError('mantissa must be an integer')
        if not isinstance(exponent, int):
            raise TypeError('exponent must be an integer')
        if not fmt.mantissa_lowest <= mantissa <= fmt.mantissa_max:
            raise ValueError(f'mantissa {mantissa:,d} out of range')
        if mantissa == 0:
            if not ZERO_CODE <= exponent <= NAN_CODE:
                raise ValueError(f'exponent {exponent:,d} is not a special value code')
        elif not fmt.exponent_lowest <= exponent <= fmt.exponent_max:
            raise ValueError(f'exponent {exponent:,d} out of range')
        return super().__new__(cls, fmt, mantissa, exponent)

    # Arithmetic and ordering are provided elsewhere.  Stop tuple concatenation, repetition
    # and lexicographic comparison applying to floating point values.
    __add__ = __radd__ = __mul__ = __rmul__ = _not_numeric
    __lt__ = __le__ = __gt__ = __ge__ = _not_numeric

    @classmethod
    def _make(cls, iterable):
        raise TypeError('Float values are only made by a FloatFormat')

    def _replace(self, **kwargs):
        raise TypeError('Float values cannot be partially updated')

    def __reduce__(self):
        return self.fmt._of, (self.mantissa, self.exponent)

    ##
    ## Non-computational operations.  These are never exceptional.
    ##

    def number_class(self):
        '''Return a string describing the class of the number.'''
        if self.mantissa:
            return '-Normal' if self.mantissa < 0 else '+Normal'
        if self.exponent == ZERO_CODE:
            return 'Zero'
        if self.exponent == INF_CODE:
            return '+Infinity'
        if self.exponent == NEGATIVE_INF_CODE:
            return '-Infinity'
        return 'NaN'

    def as_tuple(self):
        '''Returns a FloatTuple: (mantissa, exponent).

        Finite numbers are returned as stored.  Infinities have an exponent of 'I' and a
        mantissa of 1 or -1 giving the sign; NaN has an exponent of 'N' and mantissa 0.
        '''
        if self.is_infinite():
            return FloatTuple(-1 if self.is_negative() else 1, 'I')
        if self.is_nan():
            return FloatTuple(0, 'N')
        return FloatTuple(self.mantissa, self.exponent)

    def is_special(self):
        '''Return True for zero, the infinities and NaN.'''
        return self.mantissa == 0

    def is_zero(self):
        '''Return True if the value is zero.'''
        return self.mantissa == 0 and self.exponent == ZERO_CODE

    def is_infinite(self):
        '''Return True if the value is infinite.'''
        return self.mantissa == 0 and self.exponent in (INF_CODE, NEGATIVE_INF_CODE)

    def is_nan(self):
        '''Return True if this is NaN.'''
        return self.mantissa == 0 and self.exponent == NAN_CODE

    def is_finite(self):
        '''Return True if the value is zero or normal.'''
        return self.mantissa != 0 or self.exponent == ZERO_CODE

    def is_negative(self):
        '''Return True for negative finite values and -infinity.'''
        if self.mantissa:
            return self.mantissa < 0
        return self.exponent == NEGATIVE_INF_CODE

    def is_canonical(self):
        '''Return True if the value is special, or its mantissa cannot be multiplied by the base
        and stay in range, or its exponent is at the format's floor.

        Mantissas grown by normalization are always canonical.  One shrunk by a base that does
        not divide the bound it exceeded can land a digit short, e.g. -129 in a format whose
        mantissa_lowest is -128 becomes -64*2^1.
        '''
        if self.mantissa == 0:
            return True
        fmt = self.fmt
        if self.exponent == fmt.exponent_lowest:
            return True
        return not fmt.mantissa_lowest <= self.mantissa * fmt.base <= fmt.mantissa_max

    def radix(self):
        return self.fmt.base

    def as_integer_ratio(self):
        '''Return a pair (n, d) of integers that represent the floating point value as a fraction
        in lowest terms and with a positive denominator.'''
        if self.mantissa == 0:
            if self.exponent == NAN_CODE:
                raise ValueError('cannot convert a NaN to an integer ratio')
            if self.exponent != ZERO_CODE:
                raise OverflowError('cannot convert an infinity to an integer ratio')
            return (0, 1)
        if self.exponent >= 0:
            return self.mantissa * self.fmt.base ** self.exponent, 1
        ratio = Fraction(self.mantissa, self.fmt.base ** -self.exponent)
        return ratio.numerator, ratio.denominator

    def to_string(self, text_format=None):
        '''Return text representing the value.  See TextFormat for output control.'''
        return (text_format or DefaultTextFormat).format(self)

    def __repr__(self):
        return self.to_string()

    def __str__(self):
        return self.to_string()

    def __bool__(self):
        return not self.is_zero()


#
# Type-system integration
#

class FloatingPoint(ABC):
    '''Marker for types that behave as floating point numbers: they have infinities, a NaN
    and inexact values.  Generic code tests for it with is_floating_point().'''


class NumericLimits(ABC):
    '''The numeric limits of a floating point type.'''

    @abstractmethod
    def max(self):
        '''Return the largest finite value.'''

    @abstractmethod
    def min(self):
        '''Return the smallest positive normal value.'''

    @abstractmethod
    def lowest(self):
        '''Return the most negative finite value.'''


class FloatLimits(NumericLimits):
    '''The numeric limits of the host's float.'''

    def max(self):
        return sys.float_info.max

    def min(self):
        return sys.float_info.min

    def lowest(self):
        return -sys.float_info.max


FloatingPoint.register(float)
FloatingPoint.register(Float)
NumericLimits.register(FloatFormat)

float_limits = FloatLimits()


def numeric_limits(kind):
    '''Return the NumericLimits of kind.

    kind is float, a FloatFormat, or a Float in which case its format's limits are
    returned.  A Float's limits are a property of its format rather than of the class.
    '''
    if isinstance(kind, Float):
        return kind.fmt
    if isinstance(kind, FloatFormat):
        return kind
    if kind is float or isinstance(kind, float):
        return float_limits
    raise TypeError(f'no numeric limits for {kind!r}')


def is_floating_point(cls):
    '''Return True if cls is a floating point type.'''
    return isinstance(cls, type) and issubclass(cls, FloatingPoint)


def is_arithmetic(cls):
    '''Return True if cls is an integral or floating point type.'''
    return is_floating_point(cls) or (isinstance(cls, type) and issubclass(cls, Integral))


def is_scalar(cls):
    '''Return True if cls is an arithmetic or enumeration type.'''
    return is_arithmetic(cls) or (isinstance(cls, type) and issubclass(cls, Enum))


def is_object(cls):
    '''Return True if cls is a type whose instances are values; only NoneType is not.'''
    return isinstance(cls, type) and cls is not type(None)


#
# Exported functions
#

DefaultContext = Context()
tls = threading.local()


def get_context():
    try:
        return tls.context
    except AttributeError:
        tls.context = DefaultContext.copy()
        return tls.context


def set_context(context):
    '''Sets the current thread's context to context (not a copy of it).'''
    tls.context = context


class LocalContext:
    '''A context manager that will set the current context for the active thread to a copy of
    context on entry to the with-statement and restore the previous context on exit.  If
    no context is specified a copy of the current context is taken instead.
    '''

    def __init__(self, context=None):
        self.saved_context = None
        self.context_to_set = context

    def __enter__(self):
        self.saved_context = get_context()
        context = (self.context_to_set or self.saved_context).copy()
        set_context(context)
        return context

    def __exit__(self, etype, value, traceback):
        set_context(self.saved_context)


local_context = LocalContext

#
# Predefined storage types and formats.
#

int8 = IntegerFormat(8, True)
int16 = IntegerFormat(16, True)
int32 = IntegerFormat(32, True)
int64 = IntegerFormat(64, True)
uint8 = IntegerFormat(8, False)
uint16 = IntegerFormat(16, False)
uint32 = IntegerFormat(32, False)
uint64 = IntegerFormat(64, False)

Base2_8_8 = FloatFormat.from_bounds(int8, int8)
Base2_16_16 = FloatFormat.from_bounds(int16, int16)
Base2_32_32 = FloatFormat.from_bounds(int32, int32)
Base10_32_16 = FloatFormat.from_bounds(int32, int16, 10)
