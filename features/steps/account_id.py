from behave import *

from near_series.account_id import AccountId, InvalidAccountId

# Use regular expressions
use_step_matcher("re")


@when("I validate the account id")
def when_validate_account_id(context):
    try:
        context.output = AccountId.validate(context.input)
    except InvalidAccountId as e:
        context.output = e


@when("I take the parent of the account id")
def when_parent_account_id(context):
    context.output = AccountId.parent(context.input)


@then("the account id should be valid")
def then_valid_account_id(context):
    assert context.output == context.input, str(context.output)


@then("the account id should be invalid")
def then_invalid_account_id(context):
    assert isinstance(context.output, InvalidAccountId)
